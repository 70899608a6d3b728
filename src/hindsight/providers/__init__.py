from hindsight.providers.anthropic_provider import AnthropicBackend
from hindsight.providers.claude_persistent import PersistentClaudeBackend, default_command
from hindsight.providers.completion import CompletionProvider
from hindsight.providers.shutdown import ShutdownSequencer
from hindsight.providers.stream_json import MessageKind, StreamJsonDecoder, StreamMessage, encode_user_message
from hindsight.providers.turns import PendingTurn, TurnCorrelator

__all__ = [
    "AnthropicBackend",
    "CompletionProvider",
    "MessageKind",
    "PendingTurn",
    "PersistentClaudeBackend",
    "ShutdownSequencer",
    "StreamJsonDecoder",
    "StreamMessage",
    "TurnCorrelator",
    "default_command",
    "encode_user_message",
]
