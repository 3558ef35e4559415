"""Prompt templates for generation, smart diff, chat and the AI workers.

Templates use ``str.format`` placeholders, so literal braces in JSON
examples are doubled.
"""

from __future__ import annotations

import json
from typing import Any

# =============================================================================
# System Prompts
# =============================================================================

SYSTEM_PROMPT = """You are Awash, an expert full-stack engineer that turns plain-language
descriptions into working web applications.

Guidelines:
- Produce complete, runnable files; never leave placeholders or elided code
- Use React with TypeScript, Tailwind CSS and shadcn/ui components
- Handle loading and error states
- Keep changes focused on what the user asked for"""

ARCHITECT_SYSTEM_PROMPT = "You are an expert software architect. Return valid JSON only."

SQL_SYSTEM_PROMPT = "You are a PostgreSQL expert. Generate secure, production-ready SQL with row level security."

CHAT_SYSTEM_PROMPT = "You are a helpful AI assistant for developers building web applications with Awash."


# =============================================================================
# Code Generation Prompts
# =============================================================================

ARCHITECTURE_PROMPT = """Create a detailed architecture plan for this request:

{prompt}

Return a JSON object with:
1. components: array of component names and purposes
2. database_schema: tables needed, each with its columns
3. features: list of features to implement
4. file_structure: files to create
5. complexity: "simple", "medium" or "complex"

Be specific and actionable."""

SCHEMA_PROMPT = """Generate PostgreSQL SQL for these tables with row level security policies:

{tables}

Requirements:
- UUID primary keys with gen_random_uuid()
- user_id columns where rows belong to a user
- RLS enabled on every table, with policies letting users manage their own rows
- Indexes on foreign keys
- created_at and updated_at timestamps

Return ONLY executable SQL, no explanations."""

CODE_PROMPT = """Generate the application described below.

## Request
{prompt}

## Architecture
{architecture}

{schema_section}## Output
Respond with a JSON object following this schema:
```json
{{
  "thought": "how you approached the implementation",
  "plan": ["step 1", "step 2"],
  "files": {{"src/pages/Generated.tsx": "complete file content"}},
  "messageToUser": "short summary for the user",
  "requiresConfirmation": false
}}
```
Every file must be complete. Do not use "// ...", "// rest of" or similar placeholders."""

CODE_REPAIR_PROMPT = """Your previous answer could not be used:

{error}

Answer the same request again, following the output format exactly and
returning complete file contents."""


# =============================================================================
# Smart Diff Prompts
# =============================================================================

SCOPE_INSTRUCTIONS = {
    "minimal": "Make ONLY the specific changes requested. Change as few lines as possible.",
    "moderate": "Update only the relevant sections. Preserve all unrelated code exactly as-is.",
    "extensive": "Make comprehensive changes but maintain all existing functionality.",
}

SMART_DIFF_PROMPT = """You are an expert at making SURGICAL code updates. Make MINIMAL changes.

CHANGE ANALYSIS:
- Scope: {scope}
- Affected Sections: {sections}
- Strategy: {strategy}

USER REQUEST: "{user_request}"

CURRENT CODE:
{current_code}
{memory_section}
CRITICAL INSTRUCTIONS:
1. {scope_instruction}
2. Do not rewrite entire sections unnecessarily
3. Preserve all formatting, indentation and code style
4. Keep all existing functionality that isn't being modified

OUTPUT FORMAT:
A brief explanation of what you changed, then the COMPLETE updated code in <code></code> tags."""


# =============================================================================
# AI Worker Prompts
# =============================================================================

CODE_GENERATION_SYSTEM_PROMPT = "You are a code generation expert. Generate clean, efficient {language} code."

DEBUG_SYSTEM_PROMPT = "You are a debugging expert."

TEST_GENERATION_SYSTEM_PROMPT = "Generate comprehensive tests using {framework}."

REASONING_SYSTEM_PROMPT = "You are a reasoning assistant. Break down problems step by step."

DEBUG_PROMPT = """Debug this code error:

Code:
{code}

Error:
{error}

Provide:
1. Root cause
2. Fix suggestion
3. Prevention tips"""

DECISION_OUTCOME_PROMPT = """Predict how well this option will work for the goal.

Goal: {user_goal}
Scenario: {scenario}

Option: {name}
Description: {description}
Pros: {pros}
Cons: {cons}

Reply with a single number between 0 and 1, the probability of success."""


# =============================================================================
# Helper Functions
# =============================================================================

def format_architecture_prompt(prompt: str) -> str:
    return ARCHITECTURE_PROMPT.format(prompt=prompt)


def format_schema_prompt(tables: list[Any]) -> str:
    return SCHEMA_PROMPT.format(tables=json.dumps(tables, indent=2))


def format_code_prompt(prompt: str, architecture: dict[str, Any], database_sql: str = "") -> str:
    """Format the code prompt; the schema section is left out when there is no SQL."""
    schema_section = f"## Database Schema\n```sql\n{database_sql}\n```\n\n" if database_sql else ""
    return CODE_PROMPT.format(
        prompt=prompt,
        architecture=json.dumps(architecture, indent=2),
        schema_section=schema_section,
    )


def format_repair_prompt(error: str) -> str:
    return CODE_REPAIR_PROMPT.format(error=error)


def format_smart_diff_prompt(
    user_request: str,
    current_code: str,
    scope: str,
    sections: list[str],
    strategy: str,
    coding_patterns: dict[str, Any] | None = None,
) -> str:
    """Format the surgical edit prompt, adding stored project patterns when known."""
    memory_section = ""
    if coding_patterns is not None:
        memory_section = f"\nPROJECT PATTERNS:\n{json.dumps(coding_patterns)}\n"
    return SMART_DIFF_PROMPT.format(
        scope=scope,
        sections=", ".join(sections) or "none identified",
        strategy=strategy,
        user_request=user_request,
        current_code=current_code,
        memory_section=memory_section,
        scope_instruction=SCOPE_INSTRUCTIONS[scope],
    )


def format_debug_prompt(code: str, error: str) -> str:
    return DEBUG_PROMPT.format(code=code, error=error)


def format_decision_outcome_prompt(
    user_goal: str,
    scenario: str,
    name: str,
    description: str,
    pros: list[str],
    cons: list[str],
) -> str:
    return DECISION_OUTCOME_PROMPT.format(
        user_goal=user_goal,
        scenario=scenario,
        name=name,
        description=description,
        pros=", ".join(pros) or "none",
        cons=", ".join(cons) or "none",
    )
