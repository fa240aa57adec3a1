# FILE: agents/plan_agent.py
"""
Plan generation agent. Its output is untrusted: the validator decides
whether any of it runs.
"""

from functools import lru_cache

from pydantic_ai import Agent
from pydantic_ai.models.google import GoogleModel
from pydantic_ai.providers.google import GoogleProvider

from config import GEMINI_MODEL_NAME, get_env_var
from models.plan import ExecutionPlan

# -----------------------------
# System Prompt
# -----------------------------
SYSTEM_PROMPT = """
You are a Query Planner. Convert the user's request into JSON matching the ExecutionPlan schema.

You receive:
- question: the user's text
- intent: the classified intent category
- sources: the data sources, resources and fields you may use

Rules:
1. Use ONLY source_id, resource_id and field names listed in `sources`
2. Exactly one resource per plan
3. operation is always "read"
4. Filter operators: eq, ne, gt, gte, lt, lte, in, contains
5. Aggregate functions: sum, avg, count, min, max; aggregate only numeric fields
6. List only the fields needed to answer the question
7. To sort by an aggregate, use its output name: "<function>_<field>", or "count" for a plain count
8. Provide defaults where necessary: limit=100, sort_order='desc'

Example:

question: "Show variance for cost center 101"
Output:
{
  "source_id": "finance_dw",
  "operation": "read",
  "resources": [{"resource_id": "cost_center_budget", "fields": ["cost_center_id", "period", "variance"]}],
  "filters": [{"field": "cost_center_id", "op": "eq", "value": 101}],
  "aggregation": null,
  "sort_by": "period",
  "sort_order": "desc",
  "limit": 100
}
"""


@lru_cache(maxsize=1)
def get_plan_agent() -> Agent:
    provider = GoogleProvider(api_key=get_env_var("GOOGLE_API_KEY"))
    model = GoogleModel(GEMINI_MODEL_NAME, provider=provider)
    return Agent(model, system_prompt=SYSTEM_PROMPT, output_type=ExecutionPlan)


async def run_plan_agent(prompt: str) -> ExecutionPlan:
    result = await get_plan_agent().run(prompt)
    return result.output
