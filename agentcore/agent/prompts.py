"""
System prompts for the auxiliary model calls made by the agent
"""

TITLE_MAX_TOKENS = 40

TITLE_PROMPT = """You name conversations.
- Reply with a single line of at most 50 characters.
- Summarize the user's first message; do not answer it.
- No quotes, colons or trailing punctuation.
- Reply with the title only."""

TITLE_REQUEST_TEMPLATE = "Generate a concise title for the following content:\n\n{content}"

SUMMARIZER_PROMPT = """You condense coding sessions so work can continue in a fresh context.
Write a summary another assistant can pick up without the original transcript:
the user's goal, what has been done so far, the files involved and their state,
decisions that were made, and the concrete next steps.
Keep it factual. Do not invent progress that did not happen."""

SUMMARIZE_INSTRUCTION = (
    "Provide a detailed but concise summary of our conversation above. "
    "Focus on what would help continue the work: what we did, what we are doing now, "
    "which files we are working on, and what we plan to do next."
)

WORKING_DIRECTORY_NOTE = "\n\n**Current working directory**\n\n{working_dir}"


def title_request(content: str) -> str:
    return TITLE_REQUEST_TEMPLATE.format(content=content)
