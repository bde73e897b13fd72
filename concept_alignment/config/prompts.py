"""LLM prompt templates for the local oracle backend."""

# Common instruction to suppress thinking and ensure JSON-only output
# Note: curly braces must be escaped as {{ }} for LangChain templates
JSON_ONLY_INSTRUCTION = """
CRITICAL: You MUST respond with ONLY a valid JSON object.
- Do NOT include any thinking, reasoning, or explanation.
- Do NOT use markdown code blocks.
- Start your response directly with the opening brace
- No text before or after the JSON."""

CONCEPT_EXTRACTION_SYSTEM_PROMPT = """You are an expert analyst who groups document elements into high-level concepts by theme, purpose, or functionality.

DATASETS:
- D1: the requirements corpus (what should exist)
- D2: the implementation corpus (what actually exists)

RULES:
1. Every element id listed in the input MUST appear in at least one concept's elementIds
2. Use the exact element ids from the input; never invent ids
3. An element that spans several themes may appear in several concepts
4. Labels are 2-5 descriptive words
5. Descriptions explain the core purpose of the concept and why its elements belong together
""" + JSON_ONLY_INSTRUCTION

CONCEPT_EXTRACTION_USER_PROMPT = """Identify the concepts in these {dataset_label} elements.

ELEMENTS ({element_count} total):
---
{elements_text}
---

Respond with ONLY this JSON structure (no other text):
{{
  "concepts": [
    {{
      "label": "Concept Name",
      "description": "What this concept covers and why these elements belong together",
      "elementIds": ["element-id-1", "element-id-2"]
    }}
  ]
}}"""

CONCEPT_MERGE_SYSTEM_PROMPT = """You are an expert at consolidating overlapping concepts. You decide which concepts should be merged into one.

RULES:
1. Reference concepts ONLY by their id in square brackets (e.g. C1, C2), never by label
2. Each concept id can appear in AT MOST ONE merge group
3. Only output merges that combine 2 or more concepts
4. Concepts not listed in any merge remain unchanged
5. If nothing should be merged, return an empty merges list
""" + JSON_ONLY_INSTRUCTION

CONCEPT_MERGE_USER_PROMPT = """Round {round}/{total_rounds}: {round_label}

MERGE CRITERIA:
{criteria}
{target_hint}

CURRENT CONCEPTS ({concept_count} total):
---
{concepts_text}
---

Respond with ONLY this JSON structure (no other text):
{{
  "merges": [
    {{
      "sourceIds": ["C1", "C2"],
      "mergedLabel": "Merged Concept Name",
      "mergedDescription": "What the merged concept covers"
    }}
  ]
}}"""

ALIGNMENT_SCORING_SYSTEM_PROMPT = """You are an expert auditor who judges how well an implementation (D2) satisfies its requirements (D1) for one concept.

POLARITY SCALE:
- 1.0: Perfect alignment - D2 fully implements all D1 requirements
- 0.5 to 0.9: Good alignment - minor gaps
- 0.0 to 0.4: Partial alignment - significant gaps
- -0.5 to -0.1: Poor alignment - D2 barely addresses D1
- -1.0: No alignment or contradictory

If there are no D1 elements, or no D2 elements, return polarity -1.0 and say why in the rationale.
""" + JSON_ONLY_INSTRUCTION

ALIGNMENT_SCORING_USER_PROMPT = """Score the alignment for this concept.

CONCEPT: {concept_label}
{concept_description}

D1 REQUIREMENTS ({d1_count} items):
---
{d1_text}
---

D2 IMPLEMENTATION ({d2_count} items):
---
{d2_text}
---

Respond with ONLY this JSON structure (no other text):
{{
  "polarity": 0.7,
  "rationale": "What is well covered and what is missing"
}}"""
