from __future__ import annotations

from collections.abc import Sequence

from src.models.normalization import NormalizationDomain

_OUTPUT_FORMAT = """\
Reply with ONLY a raw JSON object (no markdown, no commentary) in this shape:
{{
  "normalizations": [
    {{
      "canonical": "{example_canonical}",
      "variants": [{example_variants}],
      "confidence": 0.95
    }}
  ]
}}

Rules:
- Canonical names use the FULL, expanded words (never abbreviations) in Title Case.
- Every input name appears in exactly one group, copied verbatim into "variants".
- Group abbreviated, full, punctuated and mixed-case forms of the same {noun} together.
- Confidence is 0.8-1.0 depending on how certain the grouping is.
"""

COMPONENT_SYSTEM_PROMPT = (
    "You are an expert in building components and lead paint inspection terminology. "
    "You normalize component names recorded by XRF inspectors into consistent canonical "
    "forms. Group every semantically equivalent name and return one canonical name per "
    "group.\n\n"
    "Abbreviations must be grouped with their full form, using the full word as canonical:\n"
    '- "clos" / "clos." -> closet, "dr" / "dr." -> door, "win" / "wndw" / "wdw" -> window\n'
    '- "kit" / "kitch" -> kitchen, "brm" / "bdrm" / "bedrm" -> bedroom\n'
    '- "bthrm" / "bath" / "ba" -> bathroom, "cab" / "cab." -> cabinet, "ceil" -> ceiling\n'
    '- "bsmt" / "basmt" -> basement, "ext" -> exterior, "int" -> interior\n'
    '- "rm" -> room, "flr" -> floor, "trm" -> trim, "wd" / "wd." -> wood\n\n'
    "Also merge spelling variations (wainscoting / wainscot), punctuation differences "
    "(door-jamb / door jamb / doorjamb), construction synonyms (baseboard / base molding), "
    "case differences and common typos. Keep genuinely different parts apart "
    "(mullion is not muntin, sheathing is not wainscoting).\n\n"
    + _OUTPUT_FORMAT.format(
        example_canonical="Door Jamb",
        example_variants='"door jamb", "door-jamb", "dr jamb", "dr. jamb"',
        noun="component",
    )
)

SUBSTRATE_SYSTEM_PROMPT = (
    "You are an expert in building materials and lead paint inspection terminology. "
    "You normalize substrate (surface material) names recorded by XRF inspectors into "
    "consistent canonical forms. Group every semantically equivalent name and return one "
    "canonical name per group.\n\n"
    "Abbreviations must be grouped with their full form, using the full word as canonical:\n"
    '- "wd" / "wd." -> Wood, "mtl" / "met" -> Metal, "pls" / "plst" -> Plaster\n'
    '- "dw" / "drywl" -> Drywall, "conc" / "cncrt" -> Concrete, "brk" -> Brick\n\n'
    "Synonyms that must be grouped:\n"
    "- drywall / dry wall / sheetrock / gypsum / gypsum board / wallboard -> Drywall\n"
    "- wood / lumber / timber / hardwood / softwood / plywood -> Wood\n"
    "- metal / steel / iron / aluminum -> Metal\n"
    "- vinyl / PVC / plastic -> Plastic\n"
    "Prefer broad material categories (Wood, Metal, Drywall, Plaster, Concrete, Brick, "
    "Glass, Plastic) over specific types.\n\n"
    + _OUTPUT_FORMAT.format(
        example_canonical="Wood",
        example_variants='"wood", "wd", "wd.", "hardwood", "lumber"',
        noun="material",
    )
)

SYSTEM_PROMPTS: dict[NormalizationDomain, str] = {
    NormalizationDomain.COMPONENT: COMPONENT_SYSTEM_PROMPT,
    NormalizationDomain.SUBSTRATE: SUBSTRATE_SYSTEM_PROMPT,
}


def grouping_user_prompt(names: Sequence[str], noun: str = "names") -> str:
    listing = "\n".join(names)
    return (
        f"Normalize these {noun} from an XRF lead paint inspection:\n\n"
        f"{listing}\n\n"
        "Return ONLY the JSON object, no other text."
    )
