"""
Hierarchical product tags inferred from a product photo.

The vision model gets the product name, the category hint and the
description and answers with:

    category    Calzado | Ropa | Otros
    tag1        type (Sandalia, Bota, Zapatilla...)
    tag2        functional attribute (Baja, Alta, Plataforma...)
    details     list of details (Brillo, Hebilla...)
    highlights  at most 2 details to feature

Usage:
    from fyl.ai import AutoTagger

    async with AutoTagger() as tagger:
        result = await tagger.tag(AutoTagRequest(...))
"""

import json
from typing import Any, Optional

from rich.console import Console

from config.settings import config
from fyl.ai.openai_client import OpenAIClient
from fyl.errors import FYLError
from fyl.models import AutoTagRequest, AutoTagResult

console = Console()


class AutoTagError(FYLError):
    """The model response was missing, unparseable or incomplete."""


# =============================================================================
# PROMPT
# =============================================================================

PROMPT_TEMPLATE = """Analizá la imagen del producto y su nombre para inferir los tags jerárquicos.

CONTEXTO:
- Nombre del producto: {product_name}
- Categoría: {category_hint}
- Descripción: {description}

IMPORTANTE: El nombre del producto tiene PRIORIDAD si hay ambigüedad entre imagen y nombre.

Estructura de tags:
- category: "Calzado" | "Ropa" | "Otros" (debe coincidir con category_hint si es posible)
- tag1: Tipo (ej: "Sandalia", "Bota", "Chatita", "Zapatilla", "Zapato")
- tag2: Atributo funcional (ej: "Baja", "Alta", "Plataforma", "Tacón", "Sin tacón")
- details: Array de detalles (ej: ["Brillo", "Hebilla", "Bordada", "Plataforma anatómica"])
- highlights: Array de 0-2 detalles destacados (DEBE ser subset de details, máximo 2)

Responde SOLO con JSON válido en este formato exacto:
{{
  "category": "Calzado" | "Ropa" | "Otros",
  "tag1": "string",
  "tag2": "string",
  "details": ["string", ...],
  "highlights": ["string", ...],
  "confidence": 0.0-1.0
}}"""


def build_prompt(request: AutoTagRequest) -> str:
    return PROMPT_TEMPLATE.format(
        product_name=request.product_name,
        category_hint=request.category_hint,
        description=request.description or "No disponible",
    )


# =============================================================================
# RESPONSE PARSING
# =============================================================================


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def parse_tag_response(content: str) -> AutoTagResult:
    """
    Parse and clean the model's JSON answer.

    Non-list details/highlights become empty lists, highlights are limited
    to entries of details (first two kept) and a non-numeric confidence is
    replaced by the default.

    Raises:
        AutoTagError: empty content, invalid JSON or missing category/tag1/tag2
    """
    if not content:
        raise AutoTagError("No se recibió respuesta de OpenAI")

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise AutoTagError(f"Error parseando JSON de OpenAI: {e}") from e

    if not isinstance(data, dict) or not all(data.get(k) for k in ("category", "tag1", "tag2")):
        raise AutoTagError("Respuesta de IA incompleta: faltan category, tag1 o tag2")

    details = data.get("details")
    if not isinstance(details, list):
        details = []
    highlights = data.get("highlights")
    if not isinstance(highlights, list):
        highlights = []
    highlights = [h for h in highlights if h in details][: config.auto_tags.max_highlights]

    confidence = data.get("confidence")
    if not _is_number(confidence):
        confidence = config.auto_tags.default_confidence

    return AutoTagResult(
        category=str(data["category"]),
        tag1=str(data["tag1"]),
        tag2=str(data["tag2"]),
        details=[str(d) for d in details],
        highlights=[str(h) for h in highlights],
        confidence=float(confidence),
    )


# =============================================================================
# TAGGER
# =============================================================================


class AutoTagger:
    """Runs the vision model over a product image and returns its tags."""

    def __init__(self, ai_client: Optional[OpenAIClient] = None):
        self.client = ai_client
        self._owns_client = ai_client is None

    async def __aenter__(self):
        if self._owns_client:
            self.client = OpenAIClient()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if self._owns_client and self.client:
            await self.client.close()

    async def tag(self, request: AutoTagRequest) -> AutoTagResult:
        """
        Infer tags for one product.

        Args:
            request: Image URL, product name and category hint

        Returns:
            Cleaned AutoTagResult

        Raises:
            AutoTagError: the model gave no usable answer
        """
        if not self.client:
            raise RuntimeError("Tagger not initialized. Use async context manager.")

        content = await self.client.generate_with_image(
            prompt=build_prompt(request),
            image_url=request.image_url,
            json_mode=True,
        )
        result = parse_tag_response(content)
        console.print(
            f"[green]✓ Tagged {request.product_name}:[/green] "
            f"{result.category} / {result.tag1} / {result.tag2} "
            f"[dim](confidence {result.confidence:.2f})[/dim]"
        )
        return result
