import base64
import logging

from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from soltrader.utils.logging_utils import jlog


class Signer:
    """Holds the trading keypair and signs base64 transactions for broadcast."""

    def __init__(self, keypair: Keypair):
        self.keypair = keypair

    @property
    def pubkey(self) -> str:
        return str(self.keypair.pubkey())

    def sign_b64(self, tx_b64: str) -> str:
        unsigned = VersionedTransaction.from_bytes(base64.b64decode(tx_b64))
        signed = VersionedTransaction(unsigned.message, [self.keypair])
        return base64.b64encode(bytes(signed)).decode("ascii")

    def tip_transfer_b64(self, to_account: str, lamports: int, blockhash: str) -> str:
        # separate transaction: the swap transaction from the API can't be modified
        ix = transfer(TransferParams(
            from_pubkey=self.keypair.pubkey(),
            to_pubkey=Pubkey.from_string(to_account),
            lamports=lamports,
        ))
        msg = MessageV0.try_compile(self.keypair.pubkey(), [ix], [], Hash.from_string(blockhash))
        tx = VersionedTransaction(msg, [self.keypair])
        return base64.b64encode(bytes(tx)).decode("ascii")


def load_signer(cfg, logger: logging.Logger) -> Signer:
    if not cfg.wallet.private_key:
        raise RuntimeError("wallet.private_key (or SOLTRADER_WALLET_KEY) is required for live trading")
    kp = Keypair.from_base58_string(cfg.wallet.private_key)
    jlog(logger, "WALLET_LOADED", pubkey=str(kp.pubkey()))
    return Signer(kp)
