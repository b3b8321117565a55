import json
import logging

from learnsmart.services.ai_client import ai_chat
from learnsmart.services.prompts import load_prompt

logger = logging.getLogger(__name__)


def build_grading_prompt(question: str, answer: str, question_type: str | None) -> str:
    prompt = load_prompt("grading.yaml")
    template = prompt["mcq_template"] if question_type == "mcq" else prompt["open_ended_template"]
    return template.format(question=question, answer=answer)


def parse_grade(raw: str) -> dict:
    """Read ``{score, feedback}`` out of a model reply.

    Anything that is not a JSON object comes back as ``score=None`` with
    the raw reply as feedback.
    """
    try:
        result = json.loads(raw)
    except json.JSONDecodeError:
        logger.info("Grading reply was not JSON, returning it as feedback")
        return {"score": None, "feedback": raw}
    if not isinstance(result, dict):
        return {"score": None, "feedback": raw}
    return {
        "score": result.get("score"),
        "feedback": result.get("feedback", "No feedback."),
    }


async def grade_answer(question: str, answer: str, question_type: str | None = None) -> dict:
    prompt = load_prompt("grading.yaml")
    text = await ai_chat(
        [{"role": "user", "content": build_grading_prompt(question, answer, question_type)}],
        use_case="grading",
        json_mode=True,
        temperature=prompt["temperature"],
        max_tokens=prompt["max_tokens"],
    )
    return parse_grade(text)
