"""LLM prompt templates for the analysis roles.

Each analysis step has a role: a system preamble bound to the role's agent
at construction time, plus a short step instruction rendered into the user
message. User messages are rendered with Jinja2 so the repository name,
operator-supplied context and the budgeted evidence land in one place.
"""

from jinja2 import Environment, StrictUndefined

from lorekeeper.models.analysis import StepType

# =============================================================================
# Roles
# =============================================================================

SUMMARIZATION_ROLE = "summarization"

ROLE_FOR_STEP: dict[StepType, str] = {
    StepType.BASIC: "basic",
    StepType.README: "readme",
    StepType.DOCUMENTATION: "documentation",
    StepType.PACKAGE: "package",
    StepType.CODING: "coding",
    StepType.ARCHITECTURE: "architecture",
    StepType.FINAL_CONSOLIDATION: "final_consolidation",
}

ROLES: tuple[str, ...] = (*ROLE_FOR_STEP.values(), SUMMARIZATION_ROLE)

# =============================================================================
# System Preambles
# =============================================================================

_AUDIENCE = (
    "The knowledge you produce is read by AI coding assistants and by developers "
    "new to the project. Prefer concrete names (modules, classes, commands, files) "
    "over generic statements. Write Markdown."
)

SYSTEM_PROMPTS: dict[str, str] = {
    "basic": (
        "You are an expert software architect documenting a git repository.\n\n"
        "You receive package manifests, the directory structure and excerpts of the "
        "main source files. Describe:\n"
        "1. Repository overview: project name, purpose, kind (library, application, "
        "framework, tool)\n"
        "2. Technical stack: languages, key frameworks and libraries, build system\n"
        "3. Project structure: top-level directories and what they contain\n\n"
        + _AUDIENCE
    ),
    "readme": (
        "You are enriching an existing repository knowledge base from README files "
        "and root-level configuration.\n\n"
        "Extract:\n"
        "1. Official description, key features, intended users\n"
        "2. Installation and development setup\n"
        "3. Usage: examples, command-line interface, public API\n"
        "4. Configuration: options, environment variables, build settings\n\n"
        "Integrate with the existing knowledge; do not repeat what it already "
        "covers well.\n\n" + _AUDIENCE
    ),
    "documentation": (
        "You are extracting architectural and implementation detail from project "
        "documentation (docs/ directories, API references, design notes, "
        "contributing guides, changelogs).\n\n"
        "Extract:\n"
        "1. Architecture and design: patterns, core concepts, key decisions\n"
        "2. API surface and integration contracts\n"
        "3. Development guidelines: conventions, testing approach\n"
        "4. Deployment and operations\n\n"
        "Complement the existing knowledge without redundancy.\n\n" + _AUDIENCE
    ),
    "package": (
        "You are analyzing the detailed package and directory layout of a "
        "repository.\n\n"
        "Describe:\n"
        "1. Module architecture: core modules, responsibilities, dependencies "
        "between them\n"
        "2. Code organization: separation of concerns, cross-cutting concerns\n"
        "3. Test organization\n"
        "4. Build, packaging and distribution\n\n" + _AUDIENCE
    ),
    "coding": (
        "You are reading key source and test files to document how the code is "
        "written.\n\n"
        "Describe:\n"
        "1. Coding conventions: naming, error handling, logging, typing\n"
        "2. Recurring patterns and abstractions, with the files that define them\n"
        "3. Testing strategy and frameworks\n"
        "4. Where to make common kinds of change\n\n" + _AUDIENCE
    ),
    "architecture": (
        "You are a senior software architect producing architecture documentation "
        "from the accumulated knowledge about a repository.\n\n"
        "Produce, using Mermaid diagrams where they help:\n"
        "1. System architecture: major components and their relationships "
        "(graph TB)\n"
        "2. Component interaction: a sequence diagram of the main flow\n"
        "3. Data flow (flowchart LR)\n"
        "4. Deployment and runtime components, if determinable\n"
        "5. Technology layers\n\n"
        "Use valid Mermaid syntax and label every node. Name the architectural "
        "patterns in use and the critical integration points.\n\n" + _AUDIENCE
    ),
    "final_consolidation": (
        "You are consolidating an AI knowledge document for a git repository.\n\n"
        "Review all accumulated knowledge, remove redundancy and contradictions, and "
        "produce one well-organized Markdown document with a table of contents and "
        "these sections:\n"
        "1. Overview\n2. Architecture\n3. Project Structure\n4. Key Components\n"
        "5. Technology Stack\n6. APIs and Interfaces\n7. Data Models\n"
        "8. Configuration\n9. Development Workflow\n10. Integration Points\n"
        "11. Diagrams\n\n"
        "Output only the document."
    ),
    SUMMARIZATION_ROLE: (
        "You are a summarization agent. Produce concise, information-dense "
        "summaries that keep key facts, technical terms, identifiers and names, "
        "preserve the original meaning, and stay within the requested length."
    ),
}

# =============================================================================
# Step Instructions
# =============================================================================

STEP_INSTRUCTIONS: dict[StepType, str] = {
    StepType.BASIC: "Provide the basic analysis of this repository.",
    StepType.README: "Enhance the repository knowledge using its README and root files.",
    StepType.DOCUMENTATION: "Extract knowledge from the repository documentation.",
    StepType.PACKAGE: "Analyze the package and directory structure of this repository.",
    StepType.CODING: "Document the coding conventions and patterns of this repository.",
    StepType.ARCHITECTURE: "Produce the architecture documentation for this repository.",
    StepType.FINAL_CONSOLIDATION: "Write the final consolidated knowledge document.",
}

# =============================================================================
# Templates
# =============================================================================

_env = Environment(
    undefined=StrictUndefined,
    autoescape=False,
    keep_trailing_newline=False,
    trim_blocks=True,
    lstrip_blocks=True,
)

STEP_PROMPT_TEMPLATE = _env.from_string(
    """{{ instruction }}

Repository: {{ repository_name }}
{% if extra_context %}

Additional instructions from the operator:
{{ extra_context }}
{% endif %}"""
)

USER_MESSAGE_TEMPLATE = _env.from_string(
    """{{ prompt }}
{% if context %}

{{ context }}
{% endif %}"""
)

SUMMARIZATION_TEMPLATE = _env.from_string(
    """Please provide a concise summary of the following content from '{{ title }}'. \
The summary should be approximately {{ target_length }} characters long and capture the key information:

{{ content }}"""
)


def get_system_prompt(role: str) -> str:
    """Get the system preamble for a role.

    Raises:
        KeyError: If the role is unknown
    """
    return SYSTEM_PROMPTS[role]


def build_step_prompt(
    step_type: StepType,
    repository_name: str,
    extra_context: str | None = None,
) -> str:
    """Build the instruction part of a step's user message.

    Args:
        step_type: Step being executed
        repository_name: Name of the analyzed repository
        extra_context: Optional operator instructions appended to every step

    Returns:
        Rendered prompt text
    """
    return STEP_PROMPT_TEMPLATE.render(
        instruction=STEP_INSTRUCTIONS[step_type],
        repository_name=repository_name,
        extra_context=(extra_context or "").strip(),
    )


def render_user_message(prompt: str, context: str) -> str:
    """Combine a prompt and a budgeted context string into one user message."""
    return USER_MESSAGE_TEMPLATE.render(prompt=prompt, context=context.strip())


def build_summarization_prompt(content: str, title: str, target_length: int) -> str:
    """Build the prompt asking for a summary of about target_length characters."""
    return SUMMARIZATION_TEMPLATE.render(
        content=content,
        title=title,
        target_length=target_length,
    )
