from __future__ import annotations

from typing import Iterable

from ..core.types import MAX_PLAN_STEPS, Mode

PLAN_PLACEHOLDER = (
    "I've created a plan based on the investigation results. "
    'Review it below and click "Execute" when ready to proceed.'
)

_CONTRACT_SHAPE = (
    '{"comment": "...", "next_action": "tool", "tool_call": {"tool": "<name>", "params": {...}}} '
    'when calling a tool, or {"comment": "...", "next_action": "final"} for a final answer'
)

_PLAN_FOLLOWUP = (
    "Based on these tool execution results, create a structured plan. Your response must be a JSON "
    'object with a "plan" key containing "description" and "steps" (array of objects with "number" '
    f'and "description"), and optionally "comment". At most {MAX_PLAN_STEPS} steps.'
)

_ACT_FOLLOWUP = (
    "Based on these tool execution results, continue. You may call another tool if you need more "
    "information, or provide your final answer. Respond with the same JSON format and required "
    f'"next_action": {_CONTRACT_SHAPE}.'
)


def corrective_instruction(error: str | None) -> str:
    """Context sent back to the model after a structured response broke the contract."""

    reason = error or "invalid structured response"
    return (
        f"Your previous response violated the required response format ({reason}). "
        f"Resend it as a single JSON object in exactly this form: {_CONTRACT_SHAPE}. "
        "Do not add any text outside the JSON object."
    )


def continuation_message(summary: str, mode: Mode) -> str:
    text = f"\n\n**Tool Execution Results:**\n{summary}"
    if mode == "plan":
        return f"{text}\n\n{_PLAN_FOLLOWUP}"
    return f"{text}\n\n{_ACT_FOLLOWUP}"


def _listing(names: Iterable[str]) -> str:
    ordered = sorted(names)
    return ", ".join(ordered) if ordered else "(none available)"


def plan_mode_prompt(allowed: Iterable[str], blocked: Iterable[str]) -> str:
    return f"""
## YOU ARE IN PLAN MODE

**RESTRICTIONS:**
- You MUST NOT modify any files
- You MUST NOT call tools that modify code: {_listing(blocked)}
- You CAN ONLY use investigation tools: {_listing(allowed)}

**PLAN FORMAT:**
When the user asks for an implementation, respond with a JSON plan:

```json
{{
  "plan": {{
    "description": "Brief description of what this plan accomplishes",
    "steps": [
      {{"number": 1, "description": "First step description"}},
      {{"number": 2, "description": "Second step description"}}
    ]
  }}
}}
```

- At most {MAX_PLAN_STEPS} steps, numbered from 1
- Each step description must be clear and actionable
- Do not attempt to execute the plan in Plan Mode
"""


def act_mode_prompt(has_plan: bool, read_tools: Iterable[str], modify_tools: Iterable[str]) -> str:
    reads = ", ".join(list(read_tools)[:3]) or "available read tools"
    modifies = ", ".join(list(modify_tools)[:3]) or "available modification tools"

    prompt = f"""
## YOU ARE IN ACT MODE

**YOUR ROLE:**
- Execute the implementation, using tools to modify code as needed
- On each new user message, call a read tool first (e.g. {reads}) when you need context

**RESPONSE FORMAT:**
Every response is one JSON object: {_CONTRACT_SHAPE}.
"""
    if has_plan:
        prompt += """
**PLAN AVAILABLE:**
- Execute the steps outlined in the plan from Plan Mode
"""
    else:
        prompt += """
**DIRECT EXECUTION:**
- Proceed with the implementation directly
"""
    prompt += f"""
**TOOLS AVAILABLE:**
- All tools are available, including modification tools (e.g. {modifies})
- Read before you modify
"""
    return prompt
