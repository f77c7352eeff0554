"""Call outcome classification and phone-menu navigation agents."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from agents import Agent, Runner
from pydantic import BaseModel, Field

from rezkyoo.models import CallOutcome, CallResult, SearchQuery
from rezkyoo.prompts import load_prompt

logger = logging.getLogger(__name__)

FALLBACK_SUMMARY = "Could not interpret the restaurant's response"


class CallClassification(BaseModel):
    """Structured classifier output for one recorded answer."""

    outcome: str = Field(
        ...,
        description=(
            "One of: available, alternative_offered, credit_card_required, "
            "opt_out, no_reservation_line, other"
        ),
    )
    summary: str = Field(..., description="One-sentence summary for the diner")
    credit_card_required: bool = Field(
        False, description="True only if a card is needed to hold the booking"
    )
    alternative_time: str | None = Field(
        None, description="Time offered instead of the requested one"
    )


class MenuSelection(BaseModel):
    """Digit chosen from a phone menu (0 means press nothing)."""

    digit: int = Field(0, description="Touch-tone digit 1-9, or 0 for none")
    reason: str | None = Field(None, description="Why this digit was chosen")


def fallback_result(summary: str = FALLBACK_SUMMARY) -> CallResult:
    """Safe terminal result used when transcription or classification fails."""
    return CallResult(outcome=CallOutcome.OTHER, summary=summary)


def normalize_result(raw: BaseModel | Mapping[str, Any] | None) -> CallResult:
    """Coerce classifier output into a CallResult.

    Unknown or missing outcomes become ``other``; the credit-card flag is
    derived from the outcome alone, whatever the classifier set it to.

    Args:
        raw: Classifier output (model or plain dict)

    Returns:
        CallResult
    """
    if raw is None:
        return fallback_result()
    data = raw.model_dump() if isinstance(raw, BaseModel) else dict(raw)

    try:
        outcome = CallOutcome(str(data.get("outcome") or "").strip().lower())
    except ValueError:
        logger.warning(f"Unknown outcome from classifier: {data.get('outcome')!r}")
        outcome = CallOutcome.OTHER
    if outcome == CallOutcome.PENDING:
        outcome = CallOutcome.OTHER

    summary = str(data.get("summary") or "").strip() or FALLBACK_SUMMARY
    alternative_time = data.get("alternative_time") or None

    return CallResult(
        outcome=outcome,
        summary=summary,
        credit_card_required=outcome == CallOutcome.CREDIT_CARD_REQUIRED,
        alternative_time=str(alternative_time) if alternative_time else None,
    )


def describe_request(query: SearchQuery, restaurant_name: str) -> str:
    return (
        f"Restaurant: {restaurant_name}\n"
        f"Party size: {query.party_size}\n"
        f"Date: {query.spoken_date()}\n"
        f"Time: {query.spoken_time()}"
    )


class CallClassifier(ABC):
    """Interprets a transcribed answer."""

    @abstractmethod
    async def classify(
        self, transcript: str, query: SearchQuery, restaurant_name: str
    ) -> CallResult:
        """Classify a transcript.

        Raises:
            Exception: If the classification service fails
        """


class DigitSelector(ABC):
    """Chooses which phone-menu digit routes to reservations."""

    @abstractmethod
    async def select_digit(self, menu_transcript: str, query: SearchQuery) -> int:
        """Return the digit to press, or 0 for none. Never raises."""


class OutcomeClassifier(CallClassifier):
    """Agent that classifies the restaurant's answer to the reservation question."""

    def __init__(self, model: str) -> None:
        self.model = model
        self._agent: Agent | None = None

    def create(self) -> Agent:
        """Create the outcome classification agent."""
        if self._agent is not None:
            return self._agent

        self._agent = Agent(
            name="Outcome Classifier",
            model=self.model,
            instructions=load_prompt("outcome_classifier"),
            output_type=CallClassification,
        )
        logger.info("Outcome Classifier agent created")
        return self._agent

    async def classify(
        self, transcript: str, query: SearchQuery, restaurant_name: str
    ) -> CallResult:
        if not transcript.strip():
            return fallback_result("No response was captured on the call")

        agent = self.create()
        prompt = (
            f"RESERVATION REQUEST:\n{describe_request(query, restaurant_name)}\n\n"
            f"RESTAURANT ANSWER (transcribed):\n{transcript}"
        )

        runner = Runner()
        result = await runner.run(starting_agent=agent, input=prompt)
        call_result = normalize_result(result.final_output)
        logger.info(f"Classified call to {restaurant_name}: {call_result.outcome.value}")
        return call_result


class MenuNavigator(DigitSelector):
    """Agent that picks the reservations option from a phone menu."""

    def __init__(self, model: str) -> None:
        self.model = model
        self._agent: Agent | None = None

    def create(self) -> Agent:
        """Create the menu navigation agent."""
        if self._agent is not None:
            return self._agent

        self._agent = Agent(
            name="Menu Navigator",
            model=self.model,
            instructions=load_prompt("menu_navigator"),
            output_type=MenuSelection,
        )
        logger.info("Menu Navigator agent created")
        return self._agent

    async def select_digit(self, menu_transcript: str, query: SearchQuery) -> int:
        if not menu_transcript.strip():
            return 0

        try:
            runner = Runner()
            result = await runner.run(
                starting_agent=self.create(),
                input=f"PHONE MENU (transcribed):\n{menu_transcript}",
            )
            selection: MenuSelection = result.final_output
        except Exception:
            logger.exception("Menu navigation failed - not pressing any digit")
            return 0

        if not 0 <= selection.digit <= 9:
            logger.warning(f"Ignoring out-of-range menu digit {selection.digit}")
            return 0
        logger.info(f"Menu digit selected: {selection.digit} ({selection.reason})")
        return selection.digit
