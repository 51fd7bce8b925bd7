# harness.py
# Enrichment harness: the extraction control loop.
#
# The Harness is the kernel. The model is a passive responder; this class
# owns all control flow, routing, state and termination. Steps never mutate
# RunState; they return a StateDelta and the governor applies it.
#
# Control flow:
#   Deciding → Correcting → Deciding
#            → Executing  → Deciding
#            → Validating → Deciding | Terminal
#
# All terminal output is delegated to display.py. No formatting here.

import asyncio
import json
import logging
import uuid
from typing import Any

from jsonschema import Draft7Validator
from jsonschema.exceptions import SchemaError

from enrichment_harness.config import Configuration, ensure_configuration
from enrichment_harness.display import RunDisplay
from enrichment_harness.models import (
    ActionCall,
    ActionResultTurn,
    AssistantTurn,
    Outcome,
    Phase,
    RunResult,
    RunState,
    StateDelta,
    Termination,
    UserTurn,
)
from enrichment_harness.prompts import CHECKER_PROMPT, ONE_ACTION_ONLY, ONE_ACTION_REMINDER
from enrichment_harness.reasoner import (
    ChoiceMode,
    OpenRouterReasoner,
    Reasoner,
    ReasoningProtocolError,
)
from enrichment_harness.tools import SUBMIT, Action, ActionRegistry, RunContext, default_registry

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class HarnessError(Exception):
    """Base class for errors that escape a run."""


class InternalConsistencyError(HarnessError):
    """Raised when an invariant the harness maintains is violated. Always fatal."""


class TargetSchemaError(HarnessError, ValueError):
    """Raised before a run starts when the target schema is not a valid JSON Schema."""


class ActionTimeoutError(Exception):
    """An action raised its own timeout. Kept apart from the harness deadline."""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _failure_content(exc: BaseException) -> str:
    message = str(exc) or type(exc).__name__
    return f"Error: {message}\n Please fix your mistakes."


def _schema_errors(record: dict[str, Any], schema: dict[str, Any]) -> list[str]:
    """Human-readable validation errors, ordered by location in the record."""
    validator = Draft7Validator(schema)
    errors = sorted(validator.iter_errors(record), key=lambda e: list(e.absolute_path))
    lines = []
    for error in errors:
        location = "/".join(str(p) for p in error.absolute_path) or "<root>"
        lines.append(f"{location}: {error.message}")
    return lines


def _with_unique_ids(turn: AssistantTurn, taken: set[str]) -> AssistantTurn:
    """Replace missing or colliding call ids so every id in the log is unique."""
    calls: list[ActionCall] = []
    changed = False
    for call in turn.action_calls:
        if not call.id or call.id in taken:
            call = call.model_copy(update={"id": f"call_{uuid.uuid4().hex[:12]}"})
            changed = True
        taken.add(call.id)
        calls.append(call)
    if not changed:
        return turn
    return turn.model_copy(update={"action_calls": tuple(calls)})


async def _call_action(action: Action, call: ActionCall, context: RunContext) -> str:
    try:
        content = await action.invoke(call.arguments, context)
    except asyncio.TimeoutError as exc:
        raise ActionTimeoutError(f"{type(exc).__name__}: {exc}".rstrip(": ")) from exc
    if not isinstance(content, str):
        content = json.dumps(content)
    return content


# ---------------------------------------------------------------------------
# Harness
# ---------------------------------------------------------------------------


class Harness:
    """
    Runs the decide / execute / correct / validate loop for one topic at a time.

    A Harness holds only read-only collaborators, so one instance may serve
    many concurrent runs.

    Example:
        harness = Harness(OpenRouterReasoner("anthropic/claude-3.5-sonnet"))
        result = await harness.run("Anthropic", {"type": "object", ...})
    """

    def __init__(
        self,
        reasoner: Reasoner,
        registry: ActionRegistry | None = None,
        configuration: Configuration | None = None,
    ) -> None:
        self._reasoner = reasoner
        self._config = configuration or ensure_configuration()
        self._registry = registry if registry is not None else default_registry(reasoner.complete)

    # ------------------------------------------------------------------
    # Decision step
    # ------------------------------------------------------------------

    async def decide(self, state: RunState) -> StateDelta:
        """
        Ask the model for exactly one action.

        Anything other than a single call is a protocol violation and routes
        to the correction step without touching the iteration budget.
        """
        actions = self._registry.with_submit(state.target_schema)
        try:
            turn = await asyncio.wait_for(
                self._reasoner.invoke(state.conversation, actions, ChoiceMode.EXACTLY_ONE),
                timeout=self._config.reasoning_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Decision timed out after %ss", self._config.reasoning_timeout)
            turn = AssistantTurn()
        except ReasoningProtocolError as exc:
            logger.info("Unusable decision: %s", exc)
            turn = AssistantTurn()

        turn = _with_unique_ids(turn, state.conversation.call_ids())

        if len(turn.action_calls) != 1:
            logger.info("Protocol violation: %d action calls", len(turn.action_calls))
            return StateDelta(turns=(turn,), next_phase=Phase.CORRECTING)

        call = turn.action_calls[0]
        if call.name == SUBMIT:
            return StateDelta(
                turns=(turn,),
                next_phase=Phase.VALIDATING,
                candidate_record=call.arguments,
                iteration_increment=1,
            )
        return StateDelta(turns=(turn,), next_phase=Phase.EXECUTING, iteration_increment=1)

    # ------------------------------------------------------------------
    # Action execution stage
    # ------------------------------------------------------------------

    async def _invoke_action(self, call: ActionCall, context: RunContext) -> ActionResultTurn:
        try:
            action = self._registry.get(call.name)
            content = await asyncio.wait_for(
                _call_action(action, call, context),
                timeout=self._config.action_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning("Action %s (%s) timed out", call.name, call.id)
            return ActionResultTurn(
                call_id=call.id,
                action_name=call.name,
                content=f"Error: action timed out after {self._config.action_timeout}s\n"
                " Please fix your mistakes.",
                outcome=Outcome.FAILURE,
            )
        except Exception as exc:
            logger.warning("Action %s (%s) failed", call.name, call.id, exc_info=True)
            return ActionResultTurn(
                call_id=call.id,
                action_name=call.name,
                content=_failure_content(exc),
                outcome=Outcome.FAILURE,
            )

        return ActionResultTurn(call_id=call.id, action_name=call.name, content=content)

    async def execute(self, state: RunState) -> StateDelta:
        """
        Run every call of the latest decision, isolated from one another.

        Calls may run concurrently; results are appended in call order.
        """
        turn = self._latest_decision(state, "execution")
        context = RunContext(
            topic=state.topic,
            target_schema=state.target_schema,
            configuration=self._config,
        )
        semaphore = asyncio.Semaphore(self._config.max_concurrent_actions)

        async def run_one(call: ActionCall) -> ActionResultTurn:
            async with semaphore:
                return await self._invoke_action(call, context)

        results = await asyncio.gather(*(run_one(call) for call in turn.action_calls))
        return StateDelta(turns=tuple(results), next_phase=Phase.DECIDING)

    # ------------------------------------------------------------------
    # Correction step
    # ------------------------------------------------------------------

    def correct(self, state: RunState) -> StateDelta:
        turn = self._latest_decision(state, "correction")
        if turn.action_calls:
            turns = tuple(
                ActionResultTurn(
                    call_id=call.id,
                    action_name=call.name,
                    content=ONE_ACTION_ONLY,
                    outcome=Outcome.FAILURE,
                )
                for call in turn.action_calls
            )
        else:
            turns = (UserTurn(text=ONE_ACTION_REMINDER),)
        return StateDelta(turns=turns, next_phase=Phase.DECIDING)

    # ------------------------------------------------------------------
    # Validation step
    # ------------------------------------------------------------------

    async def validate(self, state: RunState, display: RunDisplay | None = None) -> StateDelta:
        """
        Independent review of the submitted candidate.

        Accept ends the run. Reject clears the candidate and feeds the
        critique back as the submit call's failed result.
        """
        located = state.conversation.last_assistant_turn()
        if located is None:
            raise InternalConsistencyError("Validation step reached with no decision in the log.")
        index, turn = located
        if (
            index != len(state.conversation) - 1
            or len(turn.action_calls) != 1
            or turn.action_calls[0].name != SUBMIT
        ):
            raise InternalConsistencyError(
                "Validation step expects the latest turn to be a single submit call; "
                f"got {[c.name for c in turn.action_calls]} at turn {index} "
                f"of {len(state.conversation)}."
            )
        if state.candidate_record is None:
            raise InternalConsistencyError("Validation step reached without a candidate record.")

        call = turn.action_calls[0]
        display = display or RunDisplay(quiet=True)

        errors = _schema_errors(state.candidate_record, state.target_schema)
        if errors:
            display.candidate_invalid(errors)
            return self._reject(call, "Invalid response: " + "; ".join(errors))

        prompt = CHECKER_PROMPT.format(presumed_info=json.dumps(state.candidate_record, indent=2))
        try:
            judgment = await asyncio.wait_for(
                self._reasoner.invoke_for_judgment(state.conversation.up_to(index), prompt),
                timeout=self._config.reasoning_timeout,
            )
        except (asyncio.TimeoutError, ReasoningProtocolError) as exc:
            reason = str(exc) or "judgment timed out"
            logger.warning("Validation unavailable: %s", reason)
            display.judgment_unavailable(reason)
            return StateDelta(
                turns=(
                    ActionResultTurn(
                        call_id=call.id,
                        action_name=SUBMIT,
                        content=f"Error: validation unavailable: {reason}",
                        outcome=Outcome.FAILURE,
                    ),
                ),
                next_phase=Phase.TERMINAL,
                clear_candidate=True,
                termination=Termination.BUDGET_EXHAUSTED,
            )

        display.judgment(judgment)
        if judgment.is_acceptable:
            return StateDelta(
                turns=(
                    ActionResultTurn(
                        call_id=call.id,
                        action_name=SUBMIT,
                        content="\n".join(judgment.reasons),
                    ),
                ),
                next_phase=Phase.TERMINAL,
                termination=Termination.ACCEPTED,
            )
        return self._reject(call, judgment.improvement_notes or judgment.model_dump_json())

    @staticmethod
    def _reject(call: ActionCall, content: str) -> StateDelta:
        return StateDelta(
            turns=(
                ActionResultTurn(
                    call_id=call.id,
                    action_name=SUBMIT,
                    content=content,
                    outcome=Outcome.FAILURE,
                ),
            ),
            next_phase=Phase.DECIDING,
            clear_candidate=True,
        )

    # ------------------------------------------------------------------
    # Loop governor
    # ------------------------------------------------------------------

    def render_prompt(self, topic: str, target_schema: dict[str, Any]) -> str:
        # str.replace rather than format(): templates are caller supplied.
        return self._config.prompt.replace(
            "{info}", json.dumps(target_schema, indent=2)
        ).replace("{topic}", topic)

    @staticmethod
    def _latest_decision(state: RunState, step: str) -> AssistantTurn:
        located = state.conversation.last_assistant_turn()
        if located is None or located[0] != len(state.conversation) - 1:
            raise InternalConsistencyError(
                f"The {step} step expects the latest turn to be a decision."
            )
        return located[1]

    @staticmethod
    def _apply(state: RunState, delta: StateDelta) -> RunState:
        try:
            return state.apply(delta)
        except ValueError as exc:
            raise InternalConsistencyError(f"Invalid state transition: {exc}") from exc

    async def run(self, topic: str, target_schema: dict[str, Any]) -> RunResult:
        """
        Drive one run to termination.

        Returns a RunResult in every non-fatal case: an accepted record or a
        budget-exhausted result with no record. Raises
        InternalConsistencyError only for bugs in the loop itself.
        """
        try:
            Draft7Validator.check_schema(target_schema)
        except SchemaError as exc:
            raise TargetSchemaError(f"Target schema is invalid: {exc.message}") from exc

        config = self._config
        display = RunDisplay(quiet=config.quiet)
        display.run_started(topic, config.model, config.max_loops)

        state = RunState(topic=topic, target_schema=target_schema)
        state = self._apply(
            state,
            StateDelta(
                turns=(UserTurn(text=self.render_prompt(topic, target_schema)),),
                next_phase=Phase.DECIDING,
            ),
        )

        phase = Phase.DECIDING
        termination = Termination.BUDGET_EXHAUSTED
        streak = 0

        while phase is not Phase.TERMINAL:
            if phase is Phase.DECIDING:
                pending = state.conversation.pending_calls()
                if pending:
                    raise InternalConsistencyError(
                        f"Unanswered action calls before decision: {[c.id for c in pending]}"
                    )
                if state.iteration_count >= config.max_loops:
                    phase = Phase.TERMINAL
                    continue
                delta = await self.decide(state)
                if delta.next_phase is Phase.CORRECTING:
                    streak += 1
                    calls = delta.turns[0].action_calls
                    display.protocol_violation(len(calls), streak)
                else:
                    streak = 0
                    display.decision(
                        state.iteration_count + 1,
                        config.max_loops,
                        delta.turns[0].action_calls[0],
                    )

            elif phase is Phase.CORRECTING:
                delta = self.correct(state)
                if streak > config.max_consecutive_corrections:
                    logger.warning("Giving up after %d consecutive protocol violations", streak)
                    display.halt(f"{streak} consecutive malformed decisions. Run terminated.")
                    delta = delta.model_copy(
                        update={
                            "next_phase": Phase.TERMINAL,
                            "termination": Termination.BUDGET_EXHAUSTED,
                        }
                    )

            elif phase is Phase.EXECUTING:
                delta = await self.execute(state)
                for turn in delta.turns:
                    display.action_result(turn)

            elif phase is Phase.VALIDATING:
                delta = await self.validate(state, display)

            else:
                raise InternalConsistencyError(f"Unknown phase {phase!r}")

            state = self._apply(state, delta)
            phase = delta.next_phase
            if delta.termination is not None:
                termination = delta.termination

        record = state.candidate_record if termination is Termination.ACCEPTED else None
        if termination is Termination.ACCEPTED and record is None:
            raise InternalConsistencyError("Run accepted without a candidate record.")

        result = RunResult(
            record=record,
            conversation=state.conversation,
            terminated=termination,
            iteration_count=state.iteration_count,
        )
        display.final_result(result)
        return result


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


async def run(
    topic: str,
    target_schema: dict[str, Any],
    configuration: Configuration | None = None,
    *,
    reasoner: Reasoner | None = None,
    registry: ActionRegistry | None = None,
) -> RunResult:
    """Resolve collaborators from configuration and run one topic."""
    configuration = configuration or ensure_configuration()
    reasoner = reasoner or OpenRouterReasoner(configuration.model)
    harness = Harness(reasoner, registry=registry, configuration=configuration)
    return await harness.run(topic, target_schema)
