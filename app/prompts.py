"""Prompt templates for article generation.

Two variants: the document template asks for Markdown and is used by the
single-shot endpoint; the stream template asks for plain text whose length
tracks the source and is used by the SSE endpoint.
"""

from __future__ import annotations

import re

from app.schemas import GenerationRequest

# Keeps room in the model context for the instructions and the reply.
MAX_SOURCE_CHARS = 4000

TRUNCATION_NOTICE = (
    f"\n\n[Note: the source text is long, so only its first {MAX_SOURCE_CHARS} "
    "characters are included. Write the articles from this excerpt and keep "
    "each article complete.]"
)

DOCUMENT_TEMPLATE = """\
# Article writing task

## Source material
Read and understand the original article below:
```
{text}
```

## Task details
1. Using the source material above, write {num} high-quality articles.
2. Every article must:
- be optimised for the "{channels}" channel
- focus on "{direction}"
- follow these content requirements: "{requirements}"
- be no shorter than the source, while staying a reasonable length
- have a catchy title
- have a clear structure with distinct, readable paragraphs
3. After the articles, list the SEO keywords and give optimisation advice such as keyword density.
4. If an article mentions years or months, write their digits as HTML entities.

## SEO requirements
Work these keywords in naturally: {seo_keywords}

## Purpose
The articles will be used for: {scope}

## Output format
Write the articles in Markdown and separate them with "---".
"""

STREAM_TEMPLATE = """\
# Article writing task

## Source material
Read and understand the original article below:
```
{text}
```

## Task details
1. Using the source material above, write {num} high-quality articles.
2. Every article must:
- be optimised for the "{channels}" channel
- focus on "{direction}"
- follow these content requirements: "{requirements}"
- be 90-110% of the source length, while staying a reasonable length
- have a catchy title
- have a clear structure with distinct, readable paragraphs
3. After the articles, list the SEO keywords and give optimisation advice such as keyword density.

## SEO requirements
Work these keywords in naturally: {seo_keywords}

## Purpose
The articles will be used for: {scope}

## Output format
Write plain document text without any Markdown markup and separate the articles with "---".
"""

_PLACEHOLDER_RE = re.compile(r"\{(text|num|channels|direction|requirements|seo_keywords|scope)\}")


def prepare_source_text(text: str) -> str:
    """Cut overly long source text down to MAX_SOURCE_CHARS and say so."""
    if len(text) <= MAX_SOURCE_CHARS:
        return text
    return text[:MAX_SOURCE_CHARS] + TRUNCATION_NOTICE


def render_prompt(template: str, request: GenerationRequest) -> str:
    """Fill the template placeholders with the request fields.

    Substitution is a single pass, so braces inside user-supplied values
    are left alone.
    """
    values = {
        "text": prepare_source_text(request.text),
        "num": str(request.num),
        "channels": request.channels,
        "direction": request.direction,
        "requirements": request.requirements,
        "seo_keywords": request.seo_keywords,
        "scope": request.scope,
    }
    return _PLACEHOLDER_RE.sub(lambda m: values[m.group(1)], template)


def build_document_prompt(request: GenerationRequest) -> str:
    return render_prompt(DOCUMENT_TEMPLATE, request)


def build_stream_prompt(request: GenerationRequest) -> str:
    return render_prompt(STREAM_TEMPLATE, request)
