"""
The shared clarification + plan-generation pipeline.

Used by the Super-Agent and Pro-Max strategies, which differ only in their
persona and in how hard they try:
- With no `answers`, the pipeline first asks the model whether clarifying
  questions are needed. A non-empty list becomes a clarification message and
  the turn ends there; an empty list goes straight to plan generation.
- With `answers` (a resumed clarification), questions are skipped and the
  plan is generated from the original prompt plus the answers, in order.

Plan generation is attempted up to `max_attempts` times, waiting
`base_delay * 2 ** (attempt - 1)` seconds between attempts. When every
attempt fails a PlanGenerationError carries the last error's message.
"""
import logging
import time
from dataclasses import dataclass
from typing import Optional

from agents.instructions import with_context
from agents.schemas import CLARIFICATION_SCHEMA, PLAN_SCHEMA, ClarificationResponse, PlanResponse, parse_response
from agents.types import AgentInput, AgentServices
from data_models import AgentExecutionResult, Clarification, Message, Plan, Task
from errors import PlanGenerationError
from tracer import trace
from utils import emit_chunk, format_answers, to_provider_history, with_user_prompt


@dataclass(frozen=True)
class PlanningProfile:
    """The knobs that distinguish one planning persona from another."""

    name: str
    clarification_instruction: str
    plan_instruction: str
    clarification_text: str
    # Whether prior chat turns are sent along with the request.
    use_history: bool = True
    max_attempts: int = 1
    base_delay: float = 1.0


def _find_clarification(history: list[Message], prompt: str) -> Optional[Clarification]:
    for message in reversed(history):
        if message.clarification is not None and message.clarification.prompt == prompt:
            return message.clarification
    return None


def build_plan_prompt(agent_input: AgentInput) -> str:
    """
    Renders the plan-generation request.

    The original prompt always comes first. Answers follow in the order they
    were given, paired with their questions when the matching clarification
    is still in the history.
    """
    prompt = f'User request: "{agent_input.prompt}"'
    if not agent_input.answers:
        return prompt
    clarification = _find_clarification(agent_input.history, agent_input.prompt)
    if clarification is not None and len(clarification.questions) == len(agent_input.answers):
        pairs = "\n".join(
            f"{i + 1}. Q: {question}\n   A: {answer}"
            for i, (question, answer) in enumerate(zip(clarification.questions, agent_input.answers))
        )
        return f"{prompt}\n\nUser's answers to clarifying questions:\n{pairs}"
    return f"{prompt}\n\nUser's answers to clarifying questions:\n{format_answers(agent_input.answers)}"


def _contents(agent_input: AgentInput, profile: PlanningProfile, prompt: str):
    history = to_provider_history(agent_input.history) if profile.use_history else []
    return with_user_prompt(history, prompt)


def _instruction(agent_input: AgentInput, base: str) -> str:
    return with_context(
        base,
        memory_context=agent_input.memory_context,
        project_memory=agent_input.project.project_memory,
        platform=agent_input.project.platform,
    )


@trace
def generate_clarifying_questions(agent_input: AgentInput, services: AgentServices, profile: PlanningProfile) -> list[str]:
    data = services.provider.generate_json(
        _instruction(agent_input, profile.clarification_instruction),
        _contents(agent_input, profile, f'User\'s goal: "{agent_input.prompt}"'),
        CLARIFICATION_SCHEMA,
        model=agent_input.model,
    )
    response = parse_response(ClarificationResponse, data)
    return [q.strip() for q in response.questions if q and q.strip()]


@trace
def generate_plan(agent_input: AgentInput, services: AgentServices, profile: PlanningProfile) -> PlanResponse:
    """
    Generates a plan, retrying with exponential backoff.

    Raises:
        PlanGenerationError: After `profile.max_attempts` failed attempts.
    """
    instruction = _instruction(agent_input, profile.plan_instruction)
    contents = _contents(agent_input, profile, build_plan_prompt(agent_input))
    last_error: Optional[Exception] = None

    for attempt in range(1, profile.max_attempts + 1):
        try:
            data = services.provider.generate_json(instruction, contents, PLAN_SCHEMA, model=agent_input.model)
            return parse_response(PlanResponse, data)
        except Exception as e:
            last_error = e
            logging.error(f"{profile.name} plan generation attempt {attempt}/{profile.max_attempts} failed: {e}")
            if attempt < profile.max_attempts:
                time.sleep(profile.base_delay * 2 ** (attempt - 1))

    if profile.max_attempts == 1:
        raise PlanGenerationError(f"Plan generation failed. Details: {last_error}") from last_error
    raise PlanGenerationError(
        f"AI service unavailable after {profile.max_attempts} attempts. Details: {last_error}"
    ) from last_error


def plan_message(agent_input: AgentInput, response: PlanResponse) -> Message:
    plan = Plan(
        title=response.title,
        features=response.features,
        mermaid_graph=response.mermaid_graph,
        tasks=[Task(text=text) for text in response.tasks if text.strip()],
        is_complete=False,
    )
    return agent_input.ai_message(response.introduction, plan=plan)


@trace
def run_planning_pipeline(agent_input: AgentInput, services: AgentServices, profile: PlanningProfile) -> AgentExecutionResult:
    """Runs clarification (unless resuming) and then plan generation for one turn."""
    sink = agent_input.on_stream_chunk

    if agent_input.answers is None:
        questions = generate_clarifying_questions(agent_input, services, profile)
        if questions:
            logging.info(f"{profile.name} asking {len(questions)} clarifying questions in chat '{agent_input.chat.id}'.")
            clarification = Clarification(prompt=agent_input.prompt, questions=questions)
            return agent_input.single_message(profile.clarification_text, clarification=clarification)

    emit_chunk(sink, "Drafting the plan... 📝\n\n")
    response = generate_plan(agent_input, services, profile)
    logging.info(f"{profile.name} generated plan '{response.title}' with {len(response.tasks)} tasks.")
    return AgentExecutionResult(messages=[plan_message(agent_input, response)])
