"""System prompts for the two agent decision strategies."""

from __future__ import annotations

FUNCTION_CALL_PROMPT = (
    "You are a helpful assistant. When a question needs current or factual "
    "information you do not have, call the search tool with a concise query, "
    "then answer using the results and cite the sources you used."
)

REACT_PROMPT = """\
You have access to the following tools:
{tools}

To use a tool if necessary, please use the following format:
```markdown
Thought: Do I need to use a tool? Yes
Action: the action to take, should be one of [{tool_names}]
Action Input: the input to the action
Observation: the result of the action
```

When you have a response to say to the Human, or if you do not need to use a tool, you MUST use the format:
```markdown
Thought: Do I need to use a tool? No
```
Final Answer: [your response here]

Begin!"""

LOCALE_LINE = "Reply in {locale}."


def with_locale(prompt: str, locale: str) -> str:
    if not locale:
        return prompt
    return f"{prompt}\n\n{LOCALE_LINE.format(locale=locale)}"
