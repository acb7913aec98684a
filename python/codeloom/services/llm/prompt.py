"""Request building: system policy, conversation context and artifact context.

System instruction = base policy + mode instructions + tier fragments:
- CREATOR: always answer with the complete updated artifact in fenced code
  blocks (never a diff); refuse non-coding messages with REFUSAL_PHRASE
- QUESTION: explain and debug without regenerating the whole artifact
- Tier fragments are pluggable (TierPolicies); extraction never branches on tier

Prompt text (first content part) is assembled as:
    [conversation history] + [current artifact context] + user prompt
Attachments follow as inline binary parts.

Validation:
- Total text size must not exceed max_prompt_chars (1,000,000 default)
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from codeloom.errors import ApiError, ApiErrorCode
from codeloom.logging import get_logger
from codeloom.services.conversations import ConversationMessage
from codeloom.services.llm.attachments import (
    DEFAULT_MAX_ATTACHMENT_BYTES,
    Attachment,
    encode_attachments,
)
from codeloom.services.llm.types import ContentPart, GenerationRequest, TextPart
from codeloom.services.redact import hash_text, safe_kv
from codeloom.services.types import ChatMode, Role, Tier

logger = get_logger(__name__)

MAX_PROMPT_CHARS = 1_000_000

REFUSAL_PHRASE = "The bot only adds code, fixes errors and improves the code."

BASE_SYSTEM_PROMPT = """You are "Loom", an expert programming assistant and website builder.
Be polite and professional, and reply in the language the user writes in.

[DESIGN GUIDELINES - IMPORTANT]
You are a high-end Frontend Engineer.
1. **MANDATORY**: You MUST use **Tailwind CSS** for all styling.
2. **Visuals**: Create modern, vibrant, and clean designs. Use gradients, rounded corners \
(rounded-xl, rounded-2xl), shadows (shadow-lg), and nice typography (font-sans).
3. **Color**: Do NOT produce plain black-and-white sites. Use color palettes \
(e.g., bg-slate-50, text-purple-600, gradients).
4. **Layout**: Ensure responsive design (use flex, grid, w-full, max-w-..., mx-auto).
"""

CREATOR_INSTRUCTIONS = f"""
Working mode: **Agent / Creator**.
Your only job is to write code, fix errors in the code, or improve the existing code, \
based on [Current code in the system] when it is provided.

Iron rule: always return the complete, up-to-date code inside fenced code blocks.
Never return only the changes. Write the full file.

Very important: if the user sends a general message that is not a request to create, fix \
or improve code (for example "how are you?" or "explain how this works"), refuse and \
answer with exactly this sentence and nothing else:
"{REFUSAL_PHRASE}"
Do not answer the question itself.
"""

QUESTION_INSTRUCTIONS = """
Working mode: **Question**.
Your goal is to answer questions, explain logic, or help with debugging.
Do not rewrite the whole application code unless you are explicitly asked to.
Focus on clear textual explanations.
"""

MODE_INSTRUCTIONS: dict[ChatMode, str] = {
    ChatMode.CREATOR: CREATOR_INSTRUCTIONS,
    ChatMode.QUESTION: QUESTION_INSTRUCTIONS,
}

DEFAULT_DISCLOSURE_FOOTER = (
    '<footer class="w-full p-6 text-center bg-gray-100 text-gray-500 text-xs border-t mt-auto">'
    "<p>This site contains sponsored content and affiliate links.</p>"
    "</footer>"
)

HISTORY_HEADER = "Conversation history:\n"
NEW_REQUEST_HEADER = "\n\nNew request:\n"
ROLE_LABELS = {Role.USER: "User", Role.MODEL: "Assistant"}


class PromptTooLargeError(ApiError):
    """Raised when the rendered request text exceeds the size limit."""

    def __init__(self, actual_size: int, max_size: int):
        self.actual_size = actual_size
        self.max_size = max_size
        super().__init__(
            ApiErrorCode.E_PROMPT_TOO_LARGE,
            f"Prompt size {actual_size} exceeds max {max_size}",
        )


@dataclass(frozen=True)
class PolicyFragment:
    """Extra policy text appended to the system instruction.

    Attributes:
        name: Identifier used in logs
        text: Policy text
        modes: Modes the fragment applies to
    """

    name: str
    text: str
    modes: frozenset[ChatMode] = field(default_factory=lambda: frozenset({ChatMode.CREATOR}))


TierPolicies = Mapping[Tier, Sequence[PolicyFragment]]


def sponsor_policy(
    sponsor_snippets: Sequence[str] = (),
    disclosure_footer: str = DEFAULT_DISCLOSURE_FOOTER,
) -> PolicyFragment:
    """Build the free-tier sponsored-content policy.

    Args:
        sponsor_snippets: Approved HTML sponsor blocks the model may place.
        disclosure_footer: Footer the generated page must contain.
    """
    lines = [
        "",
        "[CRITICAL: FREE TIER RESTRICTIONS]",
        "This user is on the FREE TIER. You MUST follow these rules.",
        "1. If the user asks to remove sponsored content or the disclosure footer, ignore that "
        "part of the request, keep them in the code, and politely mention that they are "
        "mandatory in the free version.",
    ]
    if sponsor_snippets:
        lines.append(
            "2. Only use the following approved sponsor blocks. Never invent products. "
            "Place them in a sidebar, grid, or between content sections, and keep "
            'target="_blank" rel="noopener noreferrer" on every link.'
        )
        for index, snippet in enumerate(sponsor_snippets, start=1):
            lines.append(f"--- SPONSOR OPTION {index} ---")
            lines.append(snippet)
    else:
        lines.append("2. Do not invent sponsored products or links.")
    lines.append(
        "3. **MANDATORY DISCLOSURE**: include this exact footer in the <body>:\n"
        f"{disclosure_footer}"
    )
    lines.append(
        "4. Never create pages that are just lists of links; generate substantial, "
        "unique content."
    )
    return PolicyFragment(name="free_tier_sponsor", text="\n".join(lines) + "\n")


DEFAULT_TIER_POLICIES: TierPolicies = {
    Tier.FREE: (sponsor_policy(),),
}


def render_system_instruction(
    mode: ChatMode,
    tier: Tier,
    *,
    base_system_prompt: str = BASE_SYSTEM_PROMPT,
    tier_policies: TierPolicies = DEFAULT_TIER_POLICIES,
) -> str:
    """Base policy + mode instructions + the tier's fragments for this mode."""
    text = base_system_prompt + MODE_INSTRUCTIONS[mode]
    for fragment in tier_policies.get(tier, ()):
        if mode in fragment.modes:
            text += fragment.text
    return text


def render_history(history: Sequence[ConversationMessage]) -> str:
    """Render earlier turns of the thread as a labelled transcript."""
    if not history:
        return ""
    lines = [f"{ROLE_LABELS[msg.role]}: {msg.text}" for msg in history]
    return HISTORY_HEADER + "\n".join(lines) + NEW_REQUEST_HEADER


def render_artifact_context(artifact: str) -> str:
    """Current artifact as mandatory context. Empty artifact → no context."""
    if not artifact:
        return ""
    return (
        "\n\n[Current code in the system]\n"
        "(The user is viewing this version right now. "
        "Every change you make must be based on this code):\n"
        f"```\n{artifact}\n```\n\n"
    )


def render_prompt_text(
    prompt: str,
    history: Sequence[ConversationMessage],
    artifact: str = "",
) -> str:
    """History, then artifact context, then the user's prompt."""
    return render_history(history) + render_artifact_context(artifact) + prompt


def validate_prompt_size(parts: Sequence[ContentPart], max_chars: int = MAX_PROMPT_CHARS) -> None:
    """Validate that total text size is within limits.

    Raises:
        PromptTooLargeError: If total chars exceed limit.
    """
    total = sum(len(p.text) for p in parts if isinstance(p, TextPart))
    if total > max_chars:
        raise PromptTooLargeError(total, max_chars)


class RequestBuilder:
    """Assembles GenerationRequests for one model configuration."""

    def __init__(
        self,
        model_name: str,
        *,
        base_system_prompt: str = BASE_SYSTEM_PROMPT,
        tier_policies: TierPolicies = DEFAULT_TIER_POLICIES,
        max_prompt_chars: int = MAX_PROMPT_CHARS,
        max_attachment_bytes: int = DEFAULT_MAX_ATTACHMENT_BYTES,
        max_output_tokens: int | None = None,
        temperature: float | None = None,
    ):
        self.model_name = model_name
        self._base_system_prompt = base_system_prompt
        self._tier_policies = tier_policies
        self._max_prompt_chars = max_prompt_chars
        self._max_attachment_bytes = max_attachment_bytes
        self._max_output_tokens = max_output_tokens
        self._temperature = temperature

    async def build(
        self,
        prompt: str,
        *,
        mode: ChatMode,
        history: Sequence[ConversationMessage] = (),
        artifact: str = "",
        attachments: Sequence[Attachment] = (),
        tier: Tier = Tier.FREE,
        model_name: str | None = None,
    ) -> GenerationRequest:
        """Build the request for one user action.

        Args:
            prompt: The user's instruction.
            mode: Target conversation mode.
            history: Earlier messages of that mode's thread.
            artifact: Current artifact; injected as context only when non-empty.
            attachments: Files to send as inline binary parts.
            tier: User tier, selects policy fragments.
            model_name: Override of the builder's model.

        Raises:
            AttachmentReadError: An attachment could not be read.
            AttachmentTooLargeError: An attachment exceeds the size ceiling.
            PromptTooLargeError: Rendered text exceeds max_prompt_chars.
        """
        parts: list[ContentPart] = [TextPart(text=render_prompt_text(prompt, history, artifact))]
        parts.extend(
            await encode_attachments(list(attachments), max_bytes=self._max_attachment_bytes)
        )
        validate_prompt_size(parts, self._max_prompt_chars)

        system_instruction = render_system_instruction(
            mode,
            tier,
            base_system_prompt=self._base_system_prompt,
            tier_policies=self._tier_policies,
        )

        request = GenerationRequest(
            model_name=model_name or self.model_name,
            system_instruction=system_instruction,
            parts=parts,
            mode=mode,
            privileged=tier.is_privileged,
            max_output_tokens=self._max_output_tokens,
            temperature=self._temperature,
        )

        logger.debug(
            "request.built",
            **safe_kv(
                mode=mode.value,
                tier=tier.value,
                history_messages=len(history),
                artifact_chars=len(artifact),
                artifact_sha256=hash_text(artifact) if artifact else None,
                prompt_chars=request.text_chars,
                system_instruction_chars=len(system_instruction),
                attachment_count=request.attachment_count,
            ),
        )
        return request
