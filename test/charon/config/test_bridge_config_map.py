import unittest

from pydantic import ValidationError
from stellar_sdk import Network

from charon.config.bridge_config_map import BridgeConfigMap, TargetChain


class BridgeConfigMapTest(unittest.TestCase):
    def test_defaults(self):
        config = BridgeConfigMap()

        self.assertEqual(Network.TESTNET_NETWORK_PASSPHRASE, config.network_passphrase)
        self.assertEqual(TargetChain.SOLANA, config.target_chain)
        self.assertEqual("solana", str(config.target_chain))
        self.assertEqual("100", config.validator_staking_amount)
        self.assertEqual(300, config.reclaim_after_seconds)

    def test_amounts_are_validated(self):
        for amount in ("0", "-1", "abc", "0.12345678"):
            with self.subTest(amount=amount):
                with self.assertRaises(ValidationError):
                    BridgeConfigMap(validator_staking_amount=amount)

    def test_numeric_amounts_are_kept_as_strings(self):
        config = BridgeConfigMap(escrow_starting_balance=5)

        self.assertEqual("5", config.escrow_starting_balance)

    def test_assignment_is_validated(self):
        config = BridgeConfigMap()

        with self.assertRaises(ValidationError):
            config.reclaim_after_seconds = 0
        config.vault_top_up_amount = "1.5"
        self.assertEqual("1.5", config.vault_top_up_amount)

    def test_unknown_fields_are_rejected(self):
        with self.assertRaises(ValidationError):
            BridgeConfigMap(unknown_field=1)

    def test_target_chain_from_value(self):
        self.assertEqual(TargetChain.SOLANA, BridgeConfigMap(target_chain="solana").target_chain)
        with self.assertRaises(ValidationError):
            BridgeConfigMap(target_chain="ethereum")
