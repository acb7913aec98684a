"""Value types passed between the request builder, dispatcher and adapters.

A GenerationRequest holds provider-neutral content parts; each adapter
converts it to its own wire format. Streams end with exactly one done chunk,
and an adapter whose upstream stream stops without one raises
E_LLM_PROVIDER_DOWN instead of inventing it.
"""

from dataclasses import dataclass, field

from codeloom.services.types import ChatMode


@dataclass(frozen=True)
class TextPart:
    """Plain text content part."""

    text: str


@dataclass(frozen=True)
class InlineDataPart:
    """Inline binary content part.

    Attributes:
        mime_type: MIME type the provider should interpret the bytes as
        data_base64: Base64-encoded payload
        name: Original file name (never sent to the provider)
    """

    mime_type: str
    data_base64: str
    name: str | None = None


ContentPart = TextPart | InlineDataPart


@dataclass(frozen=True)
class GenerationRequest:
    """Request to the model transport.

    Constructed per user action by the request builder and discarded after dispatch.

    Attributes:
        model_name: The model identifier (e.g., "gemini-2.5-flash")
        system_instruction: System policy text (base + mode + tier fragments)
        parts: Content parts; the first is always the rendered text part
        mode: Conversation mode the request was built for
        privileged: Tier flag the request was built for
        max_output_tokens: Output ceiling, None uses provider default
        temperature: Sampling temperature, None uses provider default
    """

    model_name: str
    system_instruction: str
    parts: list[ContentPart]
    mode: ChatMode = ChatMode.CREATOR
    privileged: bool = False
    max_output_tokens: int | None = None
    temperature: float | None = None

    @property
    def text_chars(self) -> int:
        """Total characters across text parts."""
        return sum(len(p.text) for p in self.parts if isinstance(p, TextPart))

    @property
    def attachment_count(self) -> int:
        """Number of inline binary parts."""
        return sum(1 for p in self.parts if isinstance(p, InlineDataPart))


@dataclass(frozen=True)
class LLMUsage:
    """Token counts reported by the provider; any of them may be missing."""

    prompt_tokens: int | None
    completion_tokens: int | None
    total_tokens: int | None


@dataclass(frozen=True)
class LLMResponse:
    """Whole answer of a single-shot call."""

    text: str
    usage: LLMUsage | None = None
    finish_reason: str | None = None


@dataclass(frozen=True)
class LLMChunk:
    """One step of a streamed answer.

    Adapters yield any number of text chunks followed by exactly one chunk
    with done=True. Only that last chunk may carry usage and finish_reason;
    its delta_text is usually empty.
    """

    delta_text: str
    done: bool
    usage: LLMUsage | None = None
    finish_reason: str | None = None

    def __post_init__(self):
        if not self.done and self.usage is not None:
            raise ValueError("usage is only reported on the terminal chunk")


@dataclass
class RetryState:
    """Backoff bookkeeping local to one dispatch call.

    Attributes:
        max_retries: Retries allowed after the first attempt
        base_delay_ms: Base of the exponential backoff
        attempts: Attempts started so far
        delays_ms: Delays slept before each retry, in order
    """

    max_retries: int = 3
    base_delay_ms: int = 2000
    attempts: int = 0
    delays_ms: list[int] = field(default_factory=list)

    @property
    def retries_used(self) -> int:
        return len(self.delays_ms)

    @property
    def exhausted(self) -> bool:
        return self.retries_used >= self.max_retries

    def next_delay_ms(self) -> int:
        """Delay before the next retry: base * 2^n for retry n (1-based)."""
        return self.base_delay_ms * 2 ** (self.retries_used + 1)
