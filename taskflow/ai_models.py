from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ModelProfile:
    model_id: str
    label: str
    max_tokens: int
    default_temperature: float
    description: str


AI_MODELS: dict[str, ModelProfile] = {
    "gpt-3.5-turbo": ModelProfile(
        model_id="gpt-3.5-turbo",
        label="GPT-3.5 Turbo",
        max_tokens=4096,
        default_temperature=0.7,
        description="Fast and cost-effective for most tasks",
    ),
    "gpt-4": ModelProfile(
        model_id="gpt-4",
        label="GPT-4",
        max_tokens=8192,
        default_temperature=0.7,
        description="Most capable model for complex tasks",
    ),
    "gpt-4-turbo": ModelProfile(
        model_id="gpt-4-turbo",
        label="GPT-4 Turbo",
        max_tokens=128000,
        default_temperature=0.7,
        description="Latest GPT-4 with larger context window",
    ),
    "gpt-4o-mini": ModelProfile(
        model_id="gpt-4o-mini",
        label="GPT-4o Mini",
        max_tokens=4096,
        default_temperature=0.7,
        description="Optimized version for quick responses",
    ),
}


def get_model_profile(model_id: str | None) -> ModelProfile | None:
    if not model_id:
        return None
    return AI_MODELS.get(model_id.strip())


def resolve_generation_params(
    *,
    model: str | None,
    max_tokens: int | None,
    temperature: float | None,
    default_model: str,
    default_max_tokens: int,
    default_temperature: float,
) -> tuple[str, int, float]:
    """Fill unset generation parameters from the model catalog, then global defaults.

    A temperature of ``0`` is an explicit value and is kept.
    """
    resolved_model = (model or "").strip() or default_model
    profile = get_model_profile(resolved_model)

    if max_tokens is None or max_tokens <= 0:
        resolved_max_tokens = profile.max_tokens if profile else default_max_tokens
    else:
        resolved_max_tokens = int(max_tokens)

    if temperature is None:
        resolved_temperature = profile.default_temperature if profile else default_temperature
    else:
        resolved_temperature = float(temperature)

    return resolved_model, resolved_max_tokens, resolved_temperature
