# models.py
# Data contracts for the enrichment harness.
# No control flow lives here: pure schema, validation and state transitions.
#
# Every model is frozen. Steps receive a RunState snapshot and hand back a
# StateDelta; only the governor calls RunState.apply().

from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class Phase(str, Enum):
    """Loop governor states."""

    DECIDING = "deciding"
    CORRECTING = "correcting"
    EXECUTING = "executing"
    VALIDATING = "validating"
    TERMINAL = "terminal"


class Termination(str, Enum):
    ACCEPTED = "accepted"
    BUDGET_EXHAUSTED = "budget_exhausted"


# ---------------------------------------------------------------------------
# Turns
# ---------------------------------------------------------------------------


class ActionCall(BaseModel):
    """A single action chosen by the reasoning capability."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Unique within a conversation.")
    name: str = Field(..., description="Action name, looked up in the registry.")
    arguments: dict[str, Any] = Field(default_factory=dict)


class UserTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["user"] = "user"
    text: str


class AssistantTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["assistant"] = "assistant"
    text: str | None = None
    action_calls: tuple[ActionCall, ...] = ()


class ActionResultTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["action_result"] = "action_result"
    call_id: str
    action_name: str
    content: str
    outcome: Outcome = Outcome.SUCCESS


Turn = Annotated[
    Union[UserTurn, AssistantTurn, ActionResultTurn],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


class Conversation(BaseModel):
    """
    Append-only log of turns. Order is the evidence trail shown to the model.

    extend() returns a new Conversation; the receiver is never modified.
    Pairing invariants are checked on every extension and raise ValueError,
    which the harness converts into an InternalConsistencyError.
    """

    model_config = ConfigDict(frozen=True)

    turns: tuple[Turn, ...] = ()

    def __len__(self) -> int:
        return len(self.turns)

    def extend(self, new_turns) -> "Conversation":
        seen_calls = self.call_ids()
        answered = self.answered_call_ids()

        for turn in new_turns:
            if isinstance(turn, AssistantTurn):
                for call in turn.action_calls:
                    if call.id in seen_calls:
                        raise ValueError(f"Duplicate action call id {call.id!r}.")
                    seen_calls.add(call.id)
            elif isinstance(turn, ActionResultTurn):
                if turn.call_id not in seen_calls:
                    raise ValueError(f"Result for unknown action call id {turn.call_id!r}.")
                if turn.call_id in answered:
                    raise ValueError(f"Action call {turn.call_id!r} already has a result.")
                answered.add(turn.call_id)

        return Conversation(turns=self.turns + tuple(new_turns))

    def call_ids(self) -> set[str]:
        return {
            call.id
            for turn in self.turns
            if isinstance(turn, AssistantTurn)
            for call in turn.action_calls
        }

    def answered_call_ids(self) -> set[str]:
        return {turn.call_id for turn in self.turns if isinstance(turn, ActionResultTurn)}

    def pending_calls(self) -> list[ActionCall]:
        """Calls that still lack a result, in conversation order."""
        answered = self.answered_call_ids()
        return [
            call
            for turn in self.turns
            if isinstance(turn, AssistantTurn)
            for call in turn.action_calls
            if call.id not in answered
        ]

    def last_assistant_turn(self) -> tuple[int, AssistantTurn] | None:
        for index in range(len(self.turns) - 1, -1, -1):
            turn = self.turns[index]
            if isinstance(turn, AssistantTurn):
                return index, turn
        return None

    def up_to(self, index: int) -> "Conversation":
        """Prefix view, excluding the turn at `index`."""
        return Conversation(turns=self.turns[:index])


# ---------------------------------------------------------------------------
# Judgment
# ---------------------------------------------------------------------------


class Judgment(BaseModel):
    """Output of the independent review of a candidate record."""

    model_config = ConfigDict(frozen=True)

    reasons: list[str] = Field(
        ...,
        min_length=3,
        description=(
            "First, provide reasoning for why this is either good or bad as a "
            "final result. Must include at least 3 reasons."
        ),
    )
    is_acceptable: bool = Field(
        ...,
        description=(
            "After providing your reasoning, provide a value indicating whether "
            "the result is satisfactory. If not, you will continue researching."
        ),
    )
    improvement_notes: str | None = Field(
        default=None,
        description="If not acceptable, be very specific about what could be improved.",
    )


# ---------------------------------------------------------------------------
# Run state
# ---------------------------------------------------------------------------


class StateDelta(BaseModel):
    """What a step wants applied to the run state, and where to go next."""

    model_config = ConfigDict(frozen=True)

    turns: tuple[Turn, ...] = ()
    next_phase: Phase
    candidate_record: dict[str, Any] | None = None
    clear_candidate: bool = False
    iteration_increment: int = Field(default=0, ge=0, le=1)
    termination: Termination | None = None


class RunState(BaseModel):
    """Snapshot of one run. Owned by the governor; replaced, never mutated."""

    model_config = ConfigDict(frozen=True)

    topic: str
    target_schema: dict[str, Any]
    conversation: Conversation = Field(default_factory=Conversation)
    candidate_record: dict[str, Any] | None = None
    iteration_count: int = Field(default=0, ge=0)

    def apply(self, delta: StateDelta) -> "RunState":
        candidate = self.candidate_record
        if delta.clear_candidate:
            candidate = None
        if delta.candidate_record is not None:
            candidate = dict(delta.candidate_record)

        return RunState(
            topic=self.topic,
            target_schema=self.target_schema,
            conversation=self.conversation.extend(delta.turns),
            candidate_record=candidate,
            iteration_count=self.iteration_count + delta.iteration_increment,
        )


class RunResult(BaseModel):
    """What run() hands back to its caller."""

    model_config = ConfigDict(frozen=True)

    record: dict[str, Any] | None = None
    conversation: Conversation
    terminated: Termination
    iteration_count: int = 0
