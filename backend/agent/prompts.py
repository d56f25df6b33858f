"""
Prompts and Replies

System prompts sent to the model at each phase, and the fixed-format
markdown replies rendered without the model (plan, progress, paper list).
"""

from agent.state import ChatMessage, ResearchPlan, Workspace, build_context_summary


# =============================================================================
# Clarification (phase 1)
# =============================================================================

def clarification_pairs(history: list[ChatMessage], user_message: str) -> list[str]:
    """
    Assemble the Q&A transcript so far, including the answer in flight.

    History layout is [user(topic), asst(Q1), user(A1), asst(Q2), ...]; the
    topic message is skipped and (question, answer) pairs start at index 1.
    The last assistant message is the question being answered right now.
    """
    pairs = []
    for i in range(1, len(history) - 1, 2):
        question, answer = history[i], history[i + 1]
        if question.role == "assistant" and answer.role == "user":
            pairs.append(
                f"You asked: {question.content.strip()}\nUser answered: {answer.content.strip()}"
            )

    last_question = next((m for m in reversed(history) if m.role == "assistant"), None)
    if last_question is not None:
        pairs.append(
            f"You asked: {last_question.content.strip()}\nUser answered: {user_message.strip()}"
        )
    return pairs


def clarification_system_prompt(topic: str, history: list[ChatMessage], user_message: str) -> str:
    """Instructions for asking exactly one new scoping question."""
    pairs = clarification_pairs(history, user_message)
    asked = [f'"{m.content.strip()}"' for m in history if m.role == "assistant"]

    return "\n".join([
        f"You are a research scoping assistant. The user wants to research: {topic}",
        "",
        "FULL CONVERSATION SO FAR (all Q&A exchanges including the current one):",
        "\n\n".join(pairs) if pairs else "(no exchanges yet - ask the first clarifying question)",
        "",
        "QUESTIONS YOU HAVE ALREADY ASKED - DO NOT REPEAT OR REPHRASE ANY OF THESE:",
        "\n".join(asked) if asked else "(none yet)",
        "",
        "YOUR TASK: Ask ONE short follow-up question to clarify scope, focusing on:",
        "- The specific technical problem or application they want to explore",
        "- The desired output or result from the research",
        "- Scope, approach, or constraints that matter to them",
        "",
        "STRICT RULES:",
        "- Ask ONLY ONE question.",
        "- Do NOT repeat or rephrase any already-asked question.",
        "- Do NOT ask about academic level or personal background.",
        f"- Keep it short and specific to: {topic}",
        "- Do NOT suggest or mention generating a plan - the user has a dedicated button for that.",
        "",
        "Write ONLY your question. No preamble, no offer to generate a plan.",
    ])


# =============================================================================
# Q&A (phase 5)
# =============================================================================

def papers_context(workspace: Workspace, limit: int) -> str:
    """Summarize the first `limit` sources with their insights."""
    blocks = []
    for paper in workspace.sources[:limit]:
        lines = [f'"{paper.title}" ({paper.published_date})']
        insight = workspace.paper_insights.get(paper.id)
        if insight:
            lines.append(f"  Relevance: {insight.relevance_summary}")
            lines.append(f"  Findings: {insight.key_findings}")
            lines.append(f"  Usage: {insight.research_impact}")
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def answer_system_prompt(workspace: Workspace, paper_limit: int) -> str:
    """Instructions for free-form questions once research is underway."""
    return (
        f'You are an expert research assistant for: "{workspace.topic}"\n'
        f"Context: {build_context_summary(workspace)}\n"
        f"Papers:\n{papers_context(workspace, paper_limit) or 'Still gathering.'}\n"
        "Answer directly. Reference papers by name when relevant."
    )


# =============================================================================
# Fixed-format replies
# =============================================================================

def render_plan(topic: str, plan: ResearchPlan) -> str:
    lines = [
        "📋 **Research Plan**",
        "",
        f"**Topic:** {topic}",
        "",
        "**Subtopics to explore:**",
        *[f"  • {s}" for s in plan.subtopics],
        "",
        "**Search keywords:**",
        *[f"  • {k}" for k in plan.keywords],
        "",
        "**Suggested outline:**",
        *[f"  {i}. {step}" for i, step in enumerate(plan.outline, start=1)],
        "",
        "🔍 Searching arXiv for relevant papers now...",
    ]
    return "\n".join(lines)


def render_progress(workspace: Workspace) -> str:
    lines = [
        "📊 **Research Progress**",
        f"**Topic:** {workspace.topic}",
        f"**Phase:** {workspace.phase.value}",
        "",
    ]
    if workspace.research_goals:
        lines += [f"**Context:** {workspace.research_goals}", ""]
    if workspace.plan:
        lines += [
            f"**Plan:** ✅ {len(workspace.plan.subtopics)} subtopics, "
            f"{len(workspace.plan.keywords)} keywords",
            "",
        ]
    lines += [
        f"**Papers found:** {len(workspace.sources)}",
        f"**Papers analyzed:** {len(workspace.paper_insights)}",
    ]
    return "\n".join(lines)


def _authors(authors: list[str]) -> str:
    shown = ", ".join(authors[:3])
    return f"{shown} et al." if len(authors) > 3 else shown


def render_papers(workspace: Workspace) -> str:
    """List every source, with its insight when one exists."""
    if not workspace.sources:
        return 'No papers yet. Ask me to "find more papers".'

    lines = [f"📚 **{len(workspace.sources)} Papers Found**", ""]
    for i, paper in enumerate(workspace.sources, start=1):
        lines.append(f"**{i}. {paper.title}**")
        lines.append(f"   {_authors(paper.authors)} · {paper.published_date}")
        lines.append(f"   🔗 {paper.link}")
        insight = workspace.paper_insights.get(paper.id)
        if insight:
            lines.append(f"   **Why it matters:** {insight.relevance_summary}")
            lines.append(f"   **Key finding:** {insight.key_findings}")
            lines.append(f"   **How to use it:** {insight.research_impact}")
        lines.append("")
    return "\n".join(lines)
