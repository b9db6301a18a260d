"""Prompt templates for fact extraction, reranking, and answer synthesis."""

FACT_EXTRACTION_SYSTEM_PROMPT = (
    "You extract concise, verifiable facts. Respond ONLY with strict JSON. "
    "Avoid opinions, advice, speculation, instructions, greetings, and duplicates. "
    "Each fact must be self-contained, <=240 characters, and phrased as a "
    "declarative statement grounded solely in the provided content."
)

FACT_EXTRACTION_PROMPT = """You are an expert fact extractor. Return only concise, self-contained facts that are directly supported by the content.
Output strictly as JSON: {{ "facts": [ {{ "fact": "...", "importance": 0-1, "confidence": 0-1, "tags": ["optional","tags"] }} ] }}
- Facts must be atomic, declarative, and <= 240 characters.
- No opinions, advice, speculation, instructions, greetings, or boilerplate.
- Avoid duplicates; keep only distinct, recall-worthy facts.

Context:
title: {title}
source: {source}
timestamp: {timestamp}

Content:
{content}
"""

RERANK_SYSTEM_PROMPT = """You are a relevance scorer for a personal memory search engine.
Given a user query and one stored memory, rate how useful the memory is for answering the query.

Respond with a single number between 0 and 1 and nothing else:
- 1.0: directly answers the query
- 0.5: related context that partially helps
- 0.0: unrelated
"""

RERANK_USER_PROMPT = 'Query: "{query}"\n\nDocument: "{document}"'

ANSWER_SYSTEM_PROMPT = """You answer questions about the user's life using only their stored memories.

Rules:
- Base the answer strictly on the memories provided. Do not invent details.
- Prefer memories with higher scores when they conflict.
- If the memories do not contain the answer, say you don't have that information.
- Be concise and direct. Mention dates, names, and amounts exactly as stored.
"""

ANSWER_USER_PROMPT = "Memories:\n{memories}\n\nUser question:\n{question}"

NO_MEMORIES_LINE = "- No relevant memories found"
