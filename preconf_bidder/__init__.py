from .bid import Bid, Bid_Computer, Bid_Outcome, By_Hash, By_Raw_Transaction
from .configuration import Configuration
from .connection import Block_Header, Chain_Handle, Connection_Manager
from .core import Main_Core
from .identity import Signing_Identity, authenticate_address
from .transactions import Signed_Tx, Transaction_Core
from .transport import Bidder_Client

__version__ = "0.8.0"

__all__ = [
    "Bid",
    "Bid_Computer",
    "Bid_Outcome",
    "Bidder_Client",
    "Block_Header",
    "By_Hash",
    "By_Raw_Transaction",
    "Chain_Handle",
    "Configuration",
    "Connection_Manager",
    "Main_Core",
    "Signed_Tx",
    "Signing_Identity",
    "Transaction_Core",
    "authenticate_address",
]
