from codebase_qa.core.models import Chunk

PROMPT_HEADER = (
    "You are analyzing a codebase.\n\n"
    "Answer ONLY using the provided code snippets.\n\n"
    "Return STRICT JSON in this format:\n\n"
    '{ "answer": "Clear explanation", "references": [ { "file": "path/to/file", '
    '"start_line": number, "end_line": number, '
    '"reason": "Why this snippet supports the answer" } ] }\n\n'
    'If the answer cannot be found: { "answer": "Not found in provided snippets", '
    '"references": [] }\n\n'
    "## SNIPPETS:"
)

PROMPT_FOOTER = (
    "IMPORTANT: Respond ONLY with valid JSON in the format specified above. "
    "Do not add any explanation or text outside the JSON."
)

STRICT_JSON_DIRECTIVE = (
    "CRITICAL: Respond ONLY with valid JSON. Do NOT add any text, explanation, or markdown. "
    "Output ONLY the JSON object."
)


class PromptBuilder:
    """Renders the answer prompt; snippets keep the order they are given in."""

    def build(self, question: str, chunks: list[Chunk]) -> str:
        parts = [PROMPT_HEADER]
        for chunk in chunks:
            parts.append(
                f"\n\nFile: {chunk.file_path} ({chunk.start_line}-{chunk.end_line})\n"
                f"{chunk.content}\n---"
            )
        parts.append(f"\n\nQUESTION: {question}")
        parts.append(f"\n\n{PROMPT_FOOTER}")
        return "".join(parts)
