"""
LangGraph agent for weather reschedule suggestions.

Workflow:
  1. build_context → booking, current conditions, corridor forecast, open slots, rules
  2. propose       → LLM suggestions (missing key / any failure → fallback flag)
  3. validate      → drop past, out-of-horizon or aircraft-clashing proposals
  4. fallback      → rule-based suggestions (only when flagged)
  5. finalize      → at most 3 suggestions + their source
"""
import logging
import operator
from datetime import datetime, timedelta
from typing import Any, Annotated, Optional, Sequence, TypedDict

from langchain_core.messages import AIMessage, BaseMessage, SystemMessage
from langgraph.graph import StateGraph, END
from sqlalchemy.orm import Session

from crosswind.agent.llm import RescheduleLLM
from crosswind.config import config
from crosswind.errors import NotFoundError
from crosswind.models import Booking
from crosswind.rag.retriever import retrieve_rules
from crosswind.reschedule.candidates import (
    RescheduleConstraints, RescheduleContext, Suggestion, SUGGESTION_COUNT,
    build_reschedule_context, has_aircraft_conflict, rule_based_suggestions,
)
from crosswind.scheduling.availability import day_of_week, time_in_any_window, utcnow

logger = logging.getLogger(__name__)


# ── State definition ──────────────────────────────────────────────────────────

class RescheduleState(TypedDict):
    """State passed through the workflow."""
    # Input
    db: Any
    llm: Any
    booking_id: int
    constraints: RescheduleConstraints
    now: datetime
    scenario: Optional[str]

    # Workflow state
    context: Optional[RescheduleContext]
    proposals: list[Suggestion]
    rejected: list[dict]
    use_fallback: bool

    # Output
    suggestions: list[Suggestion]
    source: str
    messages: Annotated[Sequence[BaseMessage], operator.add]


# ── Workflow nodes ────────────────────────────────────────────────────────────

def build_context_node(state: RescheduleState) -> dict:
    """Step 1: Gather everything the planner needs."""
    db = state["db"]
    booking = db.get(Booking, state["booking_id"])
    if booking is None:
        raise NotFoundError("Booking not found")

    context = build_reschedule_context(
        db, booking, state["constraints"], now=state["now"], scenario=state["scenario"],
    )
    context.rules = retrieve_rules(db, context.violation_reasons, context.training_level)
    return {
        "context": context,
        "messages": [SystemMessage(
            content=f"{len(context.slots)} open slots, {len(context.rules)} rule chunks"
        )],
    }


def propose_node(state: RescheduleState) -> dict:
    """Step 2: Ask the LLM. Never raises; failures flag the fallback."""
    llm, context = state["llm"], state["context"]

    if llm is None:
        return {"use_fallback": True,
                "messages": [SystemMessage(content="LLM not configured, using rule-based suggestions")]}
    if not context.slots:
        return {"use_fallback": True,
                "messages": [SystemMessage(content="No open slots to propose")]}

    try:
        proposals = llm.generate(context)
    except Exception as e:
        logger.warning("LLM reschedule failed for booking %s: %s", context.booking_id, e)
        return {"use_fallback": True,
                "messages": [SystemMessage(content=f"LLM failed: {e}")]}

    return {
        "proposals": proposals,
        "messages": [AIMessage(content=f"{len(proposals)} proposals")],
    }


def validate_node(state: RescheduleState) -> dict:
    """Step 3: Keep proposals that fit the constraints and are bookable."""
    if state["use_fallback"]:
        return {}

    db, context = state["db"], state["context"]
    now = state["now"]
    constraints = context.constraints
    horizon = now.date() + timedelta(days=constraints.max_days_in_future)
    blackout = set(constraints.blackout_dates)
    slot_aircraft = {(s.date, s.time): s.aircraft_id for s in context.slots}
    booking = db.get(Booking, context.booking_id)

    valid, rejected, seen = [], [], set()
    for p in state["proposals"]:
        key = (p.proposed_date, p.proposed_time)
        aircraft_id = slot_aircraft.get(key, booking.aircraft_id)
        if key in seen:
            reason = "duplicate"
        elif p.proposed_at <= now:
            reason = "in the past"
        elif p.proposed_date > horizon:
            reason = "beyond max_days_in_future"
        elif p.proposed_date in blackout:
            reason = "blackout date"
        elif day_of_week(p.proposed_date) not in constraints.preferred_days_of_week:
            reason = "not a preferred day"
        elif not time_in_any_window(p.proposed_time, constraints.ranges()):
            reason = "outside preferred times"
        elif has_aircraft_conflict(db, aircraft_id, p.proposed_at, exclude_booking_id=booking.id):
            reason = "aircraft already booked"
        else:
            reason = None

        if reason:
            rejected.append({**p.to_dict(), "rejected_because": reason})
        else:
            seen.add(key)
            valid.append(p)

    if rejected:
        logger.info("Rejected %d LLM proposals for booking %s", len(rejected), booking.id)

    return {
        "proposals": valid[:SUGGESTION_COUNT],
        "rejected": rejected,
        "use_fallback": not valid,
    }


def route_after_validate(state: RescheduleState) -> str:
    return "fallback" if state["use_fallback"] else "finalize"


def fallback_node(state: RescheduleState) -> dict:
    """Step 4: Rule-based suggestions."""
    return {"suggestions": rule_based_suggestions(state["context"]), "source": "rule_based"}


def finalize_node(state: RescheduleState) -> dict:
    """Step 5: Finalize and prepare output."""
    if state["use_fallback"]:
        return {"suggestions": state["suggestions"][:SUGGESTION_COUNT], "source": "rule_based"}
    return {"suggestions": state["proposals"][:SUGGESTION_COUNT], "source": "ai"}


# ── Build graph ───────────────────────────────────────────────────────────────

def build_reschedule_graph():
    """Build the LangGraph workflow."""
    workflow = StateGraph(RescheduleState)

    workflow.add_node("build_context", build_context_node)
    workflow.add_node("propose", propose_node)
    workflow.add_node("validate", validate_node)
    workflow.add_node("fallback", fallback_node)
    workflow.add_node("finalize", finalize_node)

    workflow.set_entry_point("build_context")
    workflow.add_edge("build_context", "propose")
    workflow.add_edge("propose", "validate")
    workflow.add_conditional_edges(
        "validate", route_after_validate, {"fallback": "fallback", "finalize": "finalize"},
    )
    workflow.add_edge("fallback", "finalize")
    workflow.add_edge("finalize", END)

    return workflow.compile()


def default_llm() -> Optional[RescheduleLLM]:
    return RescheduleLLM() if config.openai.is_configured else None


# ── Main agent runner ─────────────────────────────────────────────────────────

def run_reschedule_agent(
    db: Session,
    booking_id: int,
    constraints: RescheduleConstraints,
    llm: Optional[Any] = None,
    now: Optional[datetime] = None,
    scenario: Optional[str] = None,
    use_default_llm: bool = True,
) -> dict:
    """
    Run the LangGraph reschedule workflow.

    Returns: {
        "suggestions": [Suggestion, ...],
        "source": "ai" | "rule_based",
        "context": RescheduleContext,
        "rejected": [...]
    }
    """
    if llm is None and use_default_llm:
        llm = default_llm()

    graph = build_reschedule_graph()

    initial_state = {
        "db": db,
        "llm": llm,
        "booking_id": booking_id,
        "constraints": constraints,
        "now": now or utcnow(),
        "scenario": scenario,
        "context": None,
        "proposals": [],
        "rejected": [],
        "use_fallback": False,
        "suggestions": [],
        "source": "",
        "messages": [],
    }

    result = graph.invoke(initial_state)

    return {
        "suggestions": result["suggestions"],
        "source": result["source"],
        "context": result["context"],
        "rejected": result["rejected"],
    }
