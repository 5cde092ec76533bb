"""Prompt rendering and LLM response parsing for the QDG workflow.

The prompts are plain templates; the LLM does the analysis. The parse
helpers turn the LLM's JSON answers back into validated models.
"""

from __future__ import annotations

import json
import re
from typing import Any, Iterable, List, Mapping, Optional

from .errors import ValidationError
from .models import (
    ConversationInput,
    ConversationMessage,
    QualityDimensionsResponse,
    TaskAnalysis,
    TimeContext,
)

_JSON_BLOCK = re.compile(r"```json\s*([\s\S]*?)\s*```")


def build_conversation(
    user_message: str,
    history: Optional[Iterable[Mapping[str, Any]]] = None,
    context: Optional[Mapping[str, Any]] = None,
) -> ConversationInput:
    """Validate raw tool arguments into a ConversationInput."""
    if not isinstance(user_message, str) or not user_message.strip():
        raise ValidationError("User message cannot be empty")
    return ConversationInput(
        user_message=user_message,
        history=[ConversationMessage.from_dict(item) for item in history or []],
        context=dict(context or {}),
    )


def _conversation_text(conversation: ConversationInput) -> str:
    lines = [f"{message.role}: {message.content}" for message in conversation.history]
    lines.append(f"user: {conversation.user_message}")
    return "\n".join(lines)


def build_task_analysis_prompt(conversation: ConversationInput) -> str:
    """Render the stage 1 prompt asking the LLM for a TaskAnalysis JSON."""
    context_block = ""
    if conversation.context:
        context_block = (
            "\nAdditional Context:\n"
            + json.dumps(conversation.context, indent=2, ensure_ascii=False, default=str)
            + "\n"
        )

    return f"""Please analyze the user's core task based on the following conversation content:

Conversation Content:
{_conversation_text(conversation)}
{context_block}
Please analyze according to the following dimensions and output the result in JSON format:

```json
{{
  "coreTask": "Description of the user's core task",
  "taskName": "Concise task name (suitable for file naming, can be in any language)",
  "taskType": "Task type (e.g., development, design, analysis, learning, management, consulting, etc.)",
  "complexity": 3,
  "domain": "Task domain (e.g., technical development, business management, education and training, etc.)",
  "keyElements": ["Key element 1", "Key element 2", "Key element 3"],
  "objectives": ["Main objective 1", "Main objective 2", "Main objective 3"]
}}
```

Analysis Requirements:
1. Core Task: Extract the user's main needs and expected goals
2. Task Name: Generate a concise name of 3-15 characters, suitable for file naming, avoid special symbols
3. Task Type: Classify according to the nature of the task
4. Complexity: An integer from 1 to 5 (1=Simple 2=Fairly Simple 3=Medium 4=Fairly Complex 5=Complex)
5. Domain: Identify the professional domain to which the task belongs
6. Key Elements: Identify important constraints, technical requirements, standard requirements, etc.
7. Objectives: Break down into specific, measurable goals

Please ensure the analysis is accurate, specific, and practical."""


def build_dimensions_prompt(
    task: TaskAnalysis,
    time_context: TimeContext,
    dimension_count: int,
    expected_score: float,
) -> str:
    """Render the stage 2 prompt asking for a refined task and its dimensions."""
    return f"""Please complete the following two outputs for the task below.

OUTPUT 1 - Refined Task Description: restate the task as a clear, self-contained markdown brief
(goal, scope, constraints, deliverables).

OUTPUT 2 - Evaluation Dimensions: generate {dimension_count} evaluation dimensions in JSON format.

## 📋 Task Information
- **Core Task**: {task.core_task}
- **Task Type**: {task.task_type}
- **Complexity**: {task.complexity}/5
- **Domain**: {task.domain}
- **Key Elements**: {', '.join(task.key_elements)}
- **Objectives**: {', '.join(task.objectives)}

## ⏰ Time Context
- **Current Time**: {time_context.formatted_time}
- **Year**: {time_context.year}, Month: {time_context.month}

## 🎯 Quality Target
- **Expected Score**: {expected_score}/10 points
- **Total Score Calculation**: Average of all {dimension_count} dimension scores

Output the dimensions in the following JSON format:

```json
{{
  "dimensions": [
    {{
      "name": "Dimension name (3-15 characters, specific and clear)",
      "description": "One sentence description of what this dimension evaluates",
      "importance": "One sentence explaining why this dimension is critical for the task",
      "scoring": {{
        "10": "Specific criteria for excellent performance (measurable and actionable)",
        "8": "Specific criteria for good performance (measurable and actionable)",
        "6": "Specific criteria for acceptable performance (measurable and actionable)"
      }}
    }}
  ]
}}
```

## ✅ Analysis Requirements
1. **Dimension Count**: Generate exactly {dimension_count} dimensions that comprehensively cover the task
2. **Dimension Names**: Use concise, professional names (3-15 characters) that clearly indicate what is being evaluated
3. **Descriptions**: One clear sentence explaining the scope of each dimension's evaluation
4. **Importance**: Explain why each dimension is essential for achieving task success
5. **Scoring Criteria**: Each score level (6, 8, 10) must have specific, measurable, actionable criteria
6. **Quality Standards**: Design criteria so that achieving an average of {expected_score}/10 across all dimensions represents realistic excellence for this task
7. **Domain Relevance**: All dimensions must be appropriate for the "{task.domain}" domain
8. **Comprehensive Coverage**: The {dimension_count} dimensions together should evaluate all critical aspects of the task

## ⚠️ JSON Format Requirements
- Ensure valid JSON syntax with proper quotes and commas
- Each dimension object must include all 4 fields: name, description, importance, scoring
- Scoring object must have exactly 3 levels: "6", "8", "10"
- All text should be professional and specific to the task domain

## 🎯 Final Reminder
Generate exactly {dimension_count} complete dimensions that together provide a comprehensive evaluation framework for: "{task.core_task}"

Please ensure the JSON is complete, valid, and directly usable for evaluation purposes."""


def extract_json(text: str) -> Any:
    """Decode a fenced ```json block, or the whole text when there is none."""
    if not isinstance(text, str) or not text.strip():
        raise ValidationError("Invalid JSON format: empty input")
    match = _JSON_BLOCK.search(text)
    payload = match.group(1) if match else text
    try:
        return json.loads(payload)
    except ValueError as e:
        raise ValidationError(f"Invalid JSON format: {e}") from e


def parse_task_analysis(text: str) -> TaskAnalysis:
    """Parse and validate the LLM's stage 1 answer."""
    return TaskAnalysis.from_payload(extract_json(text))


def parse_quality_dimensions(text: str, expected_count: int) -> QualityDimensionsResponse:
    """Parse and validate a dimension set against the configured count."""
    return QualityDimensionsResponse.from_payload(extract_json(text), expected_count)


def summarize_dimension_issues(text: str, expected_count: int) -> List[str]:
    """Advisory check of saved dimension text; free-form markdown yields no issues."""
    if not _JSON_BLOCK.search(text or ""):
        return []
    try:
        parse_quality_dimensions(text, expected_count)
    except ValidationError as e:
        return e.errors
    return []
