"""Narrative commentary on a finished (or running) simulation.

A summarizer turns the statistics history and the current parameters
into a few sentences of free text. It is a display-only annotation: the
simulation never depends on it, and every failure is turned into a
message string instead of an exception.

Implementations:
  - NullSummarizer:   default, no network access
  - GeminiSummarizer: Google Generative Language REST API over urllib

Usage:
    summarizer = summarizer_from_env()
    text = summarizer.summarize(sim.history, sim.params)
"""

from __future__ import annotations

import http.client
import json
import logging
import os
import urllib.error
import urllib.request
from typing import Optional, Sequence

from chimpevo.types import GenerationStats, SimulationParams

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "Narrative summary not configured (no API key)."
NO_DATA = "No generations recorded yet."
UNAVAILABLE = "Analysis unavailable."
FAILED = "Error while generating the analysis."

DEFAULT_MODEL = 'gemini-2.5-flash'
API_URL = 'https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent'
API_KEY_ENV_VARS = ('GEMINI_API_KEY', 'API_KEY')


class Summarizer:
    """Strategy interface: ``summarize(history, params) -> str``."""

    def summarize(
        self,
        history: Sequence[GenerationStats],
        params: SimulationParams,
    ) -> str:
        raise NotImplementedError


class NullSummarizer(Summarizer):
    """Always available; never talks to the network."""

    def __init__(self, message: str = NOT_CONFIGURED):
        self.message = message

    def summarize(self, history, params) -> str:
        return self.message


def build_prompt(
    history: Sequence[GenerationStats],
    params: SimulationParams,
) -> str:
    """Prompt from the first, middle and last records plus key parameters."""
    start = history[0]
    mid = history[len(history) // 2]
    end = history[-1]

    return f"""
Act as a primatologist with expertise in population genetics. Analyse the
evolution of a chimpanzee (Pan troglodytes) population.
Trait studied: coat colour (allele A = dark, dominant; allele a = light, recessive).

CONTEXT:
- Population size (N): {params.population_size}
- Fitness: wAA={params.fitness_AA}, wAa={params.fitness_Aa}, waa={params.fitness_aa}
- Migration: {params.migration_rate}

RESULTS (generation {start.generation} -> {end.generation}):
- Dark allele frequency (p): {start.freq_A:.2f} -> {end.freq_A:.2f}
- Midpoint (generation {mid.generation}): p = {mid.freq_A:.2f}
- Final heterozygosity: {end.heterozygosity_obs:.3f} (expected: {end.heterozygosity_exp:.3f})
- Fixation index (F): {end.fixation_index:.3f}

INSTRUCTIONS:
1. Which evolutionary force dominates? (natural selection on camouflage,
   genetic drift due to small size, etc.)
2. Comment on the state of the population (loss of diversity? fixation of
   the dark allele?).
3. Stay concise (max 4 sentences) and scientific.
""".strip()


class GeminiSummarizer(Summarizer):
    """Summaries from the Gemini ``generateContent`` endpoint."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = DEFAULT_MODEL,
        timeout_s: float = 30.0,
    ):
        self.api_key = api_key
        self.model = model
        self.timeout_s = timeout_s

    def _request(self, prompt: str) -> dict:
        payload = json.dumps({
            'contents': [{'parts': [{'text': prompt}]}],
        }).encode('utf-8')
        req = urllib.request.Request(
            API_URL.format(model=self.model),
            data=payload,
            headers={
                'Content-Type': 'application/json',
                'x-goog-api-key': self.api_key,
            },
            method='POST',
        )
        with urllib.request.urlopen(req, timeout=self.timeout_s) as response:
            return json.loads(response.read().decode('utf-8'))

    @staticmethod
    def _extract_text(body: dict) -> str:
        parts = body['candidates'][0]['content']['parts']
        return ''.join(part.get('text', '') for part in parts).strip()

    def summarize(self, history, params) -> str:
        if not self.api_key:
            return NOT_CONFIGURED
        if not history:
            return NO_DATA

        prompt = build_prompt(history, params)
        try:
            body = self._request(prompt)
            text = self._extract_text(body)
        except (urllib.error.URLError, http.client.HTTPException,
                TimeoutError, OSError) as e:
            logger.warning("Summarizer request failed: %s", e)
            return FAILED
        except (ValueError, KeyError, IndexError, TypeError) as e:
            logger.warning("Summarizer returned an unexpected response: %s", e)
            return FAILED
        return text or UNAVAILABLE


def summarizer_from_env(
    model: str = DEFAULT_MODEL,
    api_key_env: Optional[str] = None,
    timeout_s: float = 30.0,
) -> Summarizer:
    """GeminiSummarizer if an API key is in the environment, else NullSummarizer."""
    names = (api_key_env,) if api_key_env else API_KEY_ENV_VARS
    for name in names:
        key = os.environ.get(name)
        if key:
            return GeminiSummarizer(key, model=model, timeout_s=timeout_s)
    logger.debug("No API key in %s; narrative summaries disabled", ', '.join(names))
    return NullSummarizer()
