import logging
from test.isolated_asyncio_wrapper_test_case import IsolatedAsyncioWrapperTestCase
from test.logger_mixin_for_test import LoggerMixinForTest
from test.mock.bridge_environment import BridgeEnvironment

from stellar_sdk import Asset, TransactionEnvelope
from stellar_sdk.operation import CreateAccount, Payment, SetOptions

from charon.bridge.bridge_service import BridgeService
from charon.bridge.vault_registrar import VaultRegistrar
from charon.core.data_type.entities import Validator
from charon.exceptions import (
    MintNotFoundError,
    NoVaultError,
    ValidatorAlreadyRegisteredError,
    ValidatorNotRegisteredError,
)


class VaultRegistrarTest(IsolatedAsyncioWrapperTestCase, LoggerMixinForTest):
    def setUp(self) -> None:
        super().setUp()
        self.env = BridgeEnvironment()
        self.set_loggers([VaultRegistrar.logger(), BridgeService.logger()])
        self.validator_a = self.env.new_party()
        self.validator_b = self.env.new_party()
        self.validator_c = self.env.new_party()
        self.controller_key = self.env.controller.public_key
        self.config_key = self.env.controller_config.public_key

    def tearDown(self) -> None:
        self.remove_loggers()
        super().tearDown()

    def _envelope(self, transaction_xdr: str) -> TransactionEnvelope:
        return TransactionEnvelope.from_xdr(transaction_xdr, self.env.config.network_passphrase)

    async def test_first_validator_bootstraps_a_vault(self):
        intent = await self.env.service.get_add_validator_to_vault_intent(self.validator_a.validator)

        self.assertTrue(intent.bootstrap)
        self.assertEqual(1, intent.validator_count)
        envelope = self._envelope(intent.transaction_xdr)
        self.assertEqual(self.config_key, envelope.transaction.source.account_id)
        self.assertEqual(3, len(envelope.signatures))
        operations = envelope.transaction.operations
        self.assertEqual([CreateAccount, SetOptions, SetOptions, CreateAccount, SetOptions, SetOptions],
                         [type(op) for op in operations])
        self.assertEqual(self.validator_a.source_keypair.public_key, operations[0].source.account_id)
        self.assertTrue(self.is_logged(logging.INFO, "No vault exists yet, bootstrapping the first vault."))
        self.assertTrue(self.is_partially_logged(logging.INFO, "Vault bootstrap intent created ("))

    async def test_bootstrap_vault_is_two_of_two(self):
        intent = await self.env.join_vault(self.validator_a)

        self.assertEqual({self.controller_key: 1, self.validator_a.source_keypair.public_key: 1},
                         self.env.source.signer_weights(intent.vault_account_id))
        self.assertEqual({"low_threshold": 2, "med_threshold": 2, "high_threshold": 2},
                         self.env.source.thresholds(intent.vault_account_id))
        self.assertEqual({self.config_key: 2, self.validator_a.source_keypair.public_key: 1},
                         self.env.source.signer_weights(intent.validator_escrow_account_id))
        self.assertEqual(2, self.env.source.thresholds(intent.validator_escrow_account_id)["med_threshold"])

    async def test_add_validator_requires_an_existing_vault(self):
        with self.assertRaises(NoVaultError):
            await self.env.service._registrar.add_validator_to_vault_intent(self.validator_a.validator)

    async def test_add_validators_to_vault(self):
        bootstrap = await self.env.join_vault(self.validator_a)
        second = await self.env.join_vault(self.validator_b)
        third = await self.env.join_vault(self.validator_c)

        self.assertFalse(second.bootstrap)
        self.assertEqual(bootstrap.vault_account_id, second.vault_account_id)
        self.assertEqual(bootstrap.vault_account_id, third.vault_account_id)
        self.assertEqual(3, third.validator_count)
        self.assertEqual({self.controller_key: 3,
                          self.validator_a.source_keypair.public_key: 1,
                          self.validator_b.source_keypair.public_key: 1,
                          self.validator_c.source_keypair.public_key: 1},
                         self.env.source.signer_weights(third.vault_account_id))
        self.assertEqual(4, self.env.source.thresholds(third.vault_account_id)["high_threshold"])

    async def test_vault_weights_follow_the_validator_count(self):
        parties = [self.validator_a, self.validator_b, self.validator_c,
                   self.env.new_party(), self.env.new_party()]
        for count, party in enumerate(parties, start=1):
            intent = await self.env.join_vault(party)
            expected = {joined.source_keypair.public_key: 1 for joined in parties[:count]}
            expected[self.controller_key] = count
            with self.subTest(validators=count):
                self.assertEqual(count, intent.validator_count)
                self.assertEqual(expected, self.env.source.signer_weights(intent.vault_account_id))
                self.assertEqual({"low_threshold": count + 1,
                                  "med_threshold": count + 1,
                                  "high_threshold": count + 1},
                                 self.env.source.thresholds(intent.vault_account_id))

    async def test_joining_validator_tops_up_the_vault(self):
        bootstrap = await self.env.join_vault(self.validator_a)
        intent = await self.env.service.get_add_validator_to_vault_intent(self.validator_b.validator)

        envelope = self._envelope(intent.transaction_xdr)
        payments = [op for op in envelope.transaction.operations if isinstance(op, Payment)]
        self.assertEqual(1, len(payments))
        self.assertEqual(bootstrap.vault_account_id, payments[0].destination.account_id)
        self.assertEqual(self.validator_b.source_keypair.public_key, payments[0].source.account_id)
        self.assertEqual(3, len(envelope.signatures))

    async def test_validator_cannot_join_twice(self):
        await self.env.join_vault(self.validator_a)

        with self.assertRaises(ValidatorAlreadyRegisteredError):
            await self.env.service.get_add_validator_to_vault_intent(self.validator_a.validator)

    async def test_validator_needs_a_source_key(self):
        with self.assertRaises(ValueError):
            await self.env.service.get_add_validator_to_vault_intent(Validator(source_key=None, mint_key="key"))

    async def test_validator_needs_a_mint_key_to_join_the_mint(self):
        await self.env.join_vault(self.validator_a)
        await self.env.service.create_mint(Asset.native())
        validator = Validator(source_key=self.validator_a.source_keypair.public_key, mint_key=None)

        with self.assertRaises(ValueError):
            await self.env.service.get_add_validator_to_mint_intent(validator, Asset.native())

    async def test_add_validator_to_mint_requires_a_mint(self):
        await self.env.join_vault(self.validator_a)

        with self.assertRaises(MintNotFoundError):
            await self.env.service.get_add_validator_to_mint_intent(self.validator_a.validator, Asset.native())

    async def test_add_validator_to_mint_requires_vault_membership(self):
        await self.env.join_vault(self.validator_a)
        await self.env.service.create_mint(Asset.native())

        with self.assertRaises(ValidatorNotRegisteredError):
            await self.env.service.get_add_validator_to_mint_intent(self.validator_b.validator, Asset.native())

    async def test_add_validators_to_mint(self):
        await self.env.join_vault(self.validator_a)
        await self.env.join_vault(self.validator_b)
        created = await self.env.service.create_mint(Asset.native())

        first = await self.env.join_mint(self.validator_a, Asset.native())
        second = await self.env.join_mint(self.validator_b, Asset.native(), self.validator_a)

        self.assertEqual(1, first.required_signatures)
        self.assertEqual(2, second.required_signatures)
        multisig = self.env.mint_ledger.multisigs[second.multisig_address]
        self.assertEqual(2, multisig["m"])
        self.assertEqual([str(self.env.controller_mint.pubkey()),
                          str(self.validator_a.mint_keypair.pubkey()),
                          str(self.validator_b.mint_keypair.pubkey())],
                         multisig["signers"])
        mint = await self.env.service.get_mint(Asset.native())
        self.assertEqual(created.mint_address, mint.mint_address)
        self.assertEqual(second.multisig_address, mint.authority)
        self.assertTrue(self.is_partially_logged(logging.INFO, "Add validator to mint intent created ("))

    async def test_validator_cannot_join_mint_twice(self):
        await self.env.join_vault(self.validator_a)
        await self.env.service.create_mint(Asset.native())
        await self.env.join_mint(self.validator_a, Asset.native())

        with self.assertRaises(ValidatorAlreadyRegisteredError):
            await self.env.service.get_add_validator_to_mint_intent(self.validator_a.validator, Asset.native())
