# Error codes
ERROR_CONFIGURATION_LOAD: int = 1000
ERROR_WEB3_INIT: int = 1001
ERROR_BIDDER_CLIENT_INIT: int = 1002
ERROR_AUTHENTICATION: int = 1003
ERROR_SUBSCRIPTION: int = 1004
ERROR_RESUBSCRIBE_EXHAUSTED: int = 1005
ERROR_CHAIN_READ: int = 1006
ERROR_TRANSACTION_BUILD: int = 1007
ERROR_BID_SUBMISSION: int = 1008
ERROR_RELAY: int = 1009

# Error messages with default fallbacks
ERROR_MESSAGES = {
    ERROR_CONFIGURATION_LOAD: "Failed to load configuration.",
    ERROR_WEB3_INIT: "Failed to connect to the chain node.",
    ERROR_BIDDER_CLIENT_INIT: "Failed to create the bidder client.",
    ERROR_AUTHENTICATION: "Failed to authenticate the signing key.",
    ERROR_SUBSCRIPTION: "Failed to subscribe to new block headers.",
    ERROR_RESUBSCRIBE_EXHAUSTED: "Resubscribe attempts exhausted, halting block processing.",
    ERROR_CHAIN_READ: "Failed to read chain state.",
    ERROR_TRANSACTION_BUILD: "Failed to build transaction.",
    ERROR_BID_SUBMISSION: "Failed to submit bid.",
    ERROR_RELAY: "Failed to send bundle to relay.",
}

# Error message lookup with fallback
def get_error_message(code: int, default: str = "Unknown error") -> str:
    return ERROR_MESSAGES.get(code, default)


WEI_PER_ETH: int = 10**18
DEFAULT_PRIORITY_FEE_WEI: int = 1

# Header queue between the subscription pump and the block loop
HEADER_QUEUE_SIZE: int = 16

# EIP-4844 (Cancun) blob parameters
FIELD_ELEMENTS_PER_BLOB: int = 4096
BYTES_PER_FIELD_ELEMENT: int = 32
BYTES_PER_BLOB: int = FIELD_ELEMENTS_PER_BLOB * BYTES_PER_FIELD_ELEMENT
BLS_MODULUS: int = 52435875175126190479447740508185965837690552500527637822603658699938581184513
VERSIONED_HASH_VERSION_KZG: bytes = b"\x01"
GAS_PER_BLOB: int = 2**17
MIN_BASE_FEE_PER_BLOB_GAS: int = 1
TARGET_BLOB_GAS_PER_BLOCK: int = 393216
BLOB_BASE_FEE_UPDATE_FRACTION: int = 3338477
MAX_BLOBS_PER_TRANSACTION: int = 6
