"""Wire protocol: transport, stream decoding and tool-call reassembly."""

from toolstream.llm.accumulator import ToolCallAccumulator
from toolstream.llm.decoder import StreamDecoder, extract_message
from toolstream.llm.transport import ChatTransport

__all__ = [
    "ChatTransport",
    "StreamDecoder",
    "ToolCallAccumulator",
    "extract_message",
]
