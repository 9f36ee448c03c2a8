from logging import Logger as PythonLogger


class CharonLogger(PythonLogger):
    def __init__(self, name: str):
        super().__init__(name)

    def network(self, log_msg: str, *args, **kwargs):
        from . import NETWORK

        self.log(NETWORK, log_msg, *args, **kwargs)

    def intent(self, intent_name: str, **identifiers):
        """
        Logs a produced intent with its public identifiers only. Transaction payloads and any
        signature material are never passed here.
        """
        from . import INFO

        details = ", ".join(f"{key}={value}" for key, value in sorted(identifiers.items()))
        self.log(INFO, f"{intent_name} intent created ({details}).")
