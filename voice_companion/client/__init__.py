from .pipeline import PipelineClient, StreamedReply
from .protocol import decode_header, encode_header, read_header

__all__ = ["PipelineClient", "StreamedReply", "decode_header", "encode_header", "read_header"]
