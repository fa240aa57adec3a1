from functools import lru_cache

from pydantic import BaseModel
from pydantic_ai import Agent
from pydantic_ai.models.google import GoogleModel
from pydantic_ai.providers.google import GoogleProvider

from config import GEMINI_MODEL_NAME, get_env_var


class KnowledgeAnswer(BaseModel):
    answer: str


# System-level instruction: general knowledge only
NO_ENTERPRISE_DATA_INSTRUCTION = (
    "You must not reference, infer, estimate or invent any enterprise data: no company "
    "figures, cost centers, budgets, employees, customers or records of any kind. "
    "If the question needs such data, say that you can only give a general explanation."
)

SYSTEM_PROMPT = (
    "You are a finance and planning tutor. Answer general questions with a short, "
    "clear explanation (at most a few sentences).\n\n" + NO_ENTERPRISE_DATA_INSTRUCTION
)


@lru_cache(maxsize=1)
def get_knowledge_agent() -> Agent:
    provider = GoogleProvider(api_key=get_env_var("GOOGLE_API_KEY"))
    model = GoogleModel(GEMINI_MODEL_NAME, provider=provider)
    return Agent(model, system_prompt=SYSTEM_PROMPT, output_type=KnowledgeAnswer)


async def run_knowledge_agent(question: str) -> KnowledgeAnswer:
    """Only the question text goes in; no context, no identity, no data."""
    result = await get_knowledge_agent().run(question)
    return result.output
