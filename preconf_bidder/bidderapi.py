"""
Messages and client stub for the ``bidderapi.v1.Bidder`` service.

The schema is assembled at import time into a private descriptor pool, so no
generated ``_pb2`` modules are needed.
"""
from google.protobuf import descriptor_pb2, descriptor_pool, message_factory

PACKAGE = "bidderapi.v1"
SEND_BID_PATH = f"/{PACKAGE}.Bidder/SendBid"

_STRING = descriptor_pb2.FieldDescriptorProto.TYPE_STRING
_INT64 = descriptor_pb2.FieldDescriptorProto.TYPE_INT64
_OPTIONAL = descriptor_pb2.FieldDescriptorProto.LABEL_OPTIONAL
_REPEATED = descriptor_pb2.FieldDescriptorProto.LABEL_REPEATED

_BID_FIELDS = (
    ("tx_hashes", 1, _STRING, _REPEATED),
    ("amount", 2, _STRING, _OPTIONAL),
    ("block_number", 3, _INT64, _OPTIONAL),
    ("decay_start_timestamp", 4, _INT64, _OPTIONAL),
    ("decay_end_timestamp", 5, _INT64, _OPTIONAL),
    ("reverting_tx_hashes", 6, _STRING, _REPEATED),
    ("raw_transactions", 7, _STRING, _REPEATED),
)

_COMMITMENT_FIELDS = (
    ("tx_hashes", 1, _STRING, _REPEATED),
    ("bid_amount", 2, _STRING, _OPTIONAL),
    ("block_number", 3, _INT64, _OPTIONAL),
    ("received_bid_digest", 4, _STRING, _OPTIONAL),
    ("received_bid_signature", 5, _STRING, _OPTIONAL),
    ("commitment_digest", 6, _STRING, _OPTIONAL),
    ("commitment_signature", 7, _STRING, _OPTIONAL),
    ("provider_address", 8, _STRING, _OPTIONAL),
    ("decay_start_timestamp", 9, _INT64, _OPTIONAL),
    ("decay_end_timestamp", 10, _INT64, _OPTIONAL),
    ("dispatch_timestamp", 11, _INT64, _OPTIONAL),
    ("reverting_tx_hashes", 12, _STRING, _REPEATED),
)


def _add_message(file_proto, name, message_fields) -> None:
    message = file_proto.message_type.add(name=name)
    for field_name, number, field_type, label in message_fields:
        message.field.add(name=field_name, number=number, type=field_type, label=label)


def _build_file() -> descriptor_pb2.FileDescriptorProto:
    file_proto = descriptor_pb2.FileDescriptorProto(
        name="bidderapi/v1/bidderapi.proto",
        package=PACKAGE,
        syntax="proto3",
    )
    _add_message(file_proto, "Bid", _BID_FIELDS)
    _add_message(file_proto, "Commitment", _COMMITMENT_FIELDS)
    service = file_proto.service.add(name="Bidder")
    service.method.add(
        name="SendBid",
        input_type=f".{PACKAGE}.Bid",
        output_type=f".{PACKAGE}.Commitment",
        server_streaming=True,
    )
    return file_proto


_POOL = descriptor_pool.DescriptorPool()
_POOL.AddSerializedFile(_build_file().SerializeToString())

Bid = message_factory.GetMessageClass(_POOL.FindMessageTypeByName(f"{PACKAGE}.Bid"))
Commitment = message_factory.GetMessageClass(_POOL.FindMessageTypeByName(f"{PACKAGE}.Commitment"))


class Bidder_Stub:
    """Client stub for ``bidderapi.v1.Bidder`` on a ``grpc`` or ``grpc.aio`` channel."""

    def __init__(self, channel):
        self.SendBid = channel.unary_stream(
            SEND_BID_PATH,
            request_serializer=Bid.SerializeToString,
            response_deserializer=Commitment.FromString,
        )
