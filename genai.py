"""Client for the generative service that fills question shortfalls and writes study hints.

The service is any OpenAI-style chat-completions endpoint configured through
``GENAI_URL``. Calls are blocking ``requests`` posts dispatched with
``asyncio.to_thread`` so the session's event loop keeps running while the
model thinks. When no endpoint is configured the client runs in offline demo
mode and returns deterministic sample content instead.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import time
from time import perf_counter
from typing import Any, Dict, List, Optional, Sequence

import requests
from pydantic import ValidationError

import disciplines
from env_validation import get_env_float
from schemas import GeneratedBatch, GeneratedQuestion, parse_json_safe

logger = logging.getLogger(__name__)

# --------- Model/endpoint from environment ---------
GENAI_URL = os.getenv("GENAI_URL", "")
GENAI_API_KEY = os.getenv("GENAI_API_KEY", "")
MODEL_ID = os.getenv("GENAI_MODEL_ID", "gemini-3-flash-preview")
HINT_MODEL_ID = os.getenv("GENAI_HINT_MODEL_ID", MODEL_ID)


class GenerationError(RuntimeError):
    """Raised when the generative service cannot produce a usable answer."""


class AugmentationFailed(GenerationError):
    """Raised when generating replacement questions fails."""


class HintGenerationFailed(GenerationError):
    """Raised when generating a study hint fails."""


QUESTION_SYSTEM_PROMPT = (
    "Você é um elaborador de questões de concursos públicos jurídicos. "
    "Responda apenas com um objeto JSON válido, sem texto adicional."
)

QUESTION_PROMPT_TEMPLATE = """Gere {count} questões de concurso público inéditas ou adaptadas.
Disciplinas: {topics}.
Áreas de Concurso: {areas}.
Bancas (Estilo): {boards}.
Órgãos (Foco): {organizations}.
Nível de dificuldade: {difficulty}.
Foco: Precisão técnica jurídica.
Para cada questão, identifique a 'discipline' exata entre: {known_topics}.

Formato de resposta:
{{"questions": [{{"statement": "...", "options": ["...", "...", "...", "..."],
"correct_index": 0, "explanation": "...", "subtopic": "...", "discipline": "...",
"area": "...", "board": "...", "organization": "..."}}]}}
Cada questão deve ter exatamente 4 alternativas e correct_index entre 0 e 3."""

HINT_PROMPT_TEMPLATE = """Atue como um Professor Especialista em Concursos Jurídicos da área de {topic}.
Questão para comentar: "{statement}"

Gere um comentário didático e altamente estruturado.
Use EXATAMENTE a seguinte estrutura (com os títulos em negrito):

**Fundamentação Legal e Doutrinária**
(Cite a Lei, Artigo, Súmula ou Doutrina aplicável de forma direta)

**Análise da Resposta Correta**
(Explique por que o gabarito é o correto de forma didática)

**Análise das Alternativas Incorretas**
(Analise brevemente o erro das demais opções, se necessário use tópicos)

Mantenha o tom profissional e direto."""

DEMO_QUESTION: Dict[str, Any] = {
    "subtopic": "Poderes da Administração",
    "options": [
        "Poder Hierárquico",
        "Poder Disciplinar",
        "Poder de Polícia",
        "Poder Regulamentar",
    ],
    "correct_index": 1,
    "explanation": (
        "O Poder Disciplinar é a faculdade de punir internamente as infrações funcionais "
        "dos servidores e demais pessoas sujeitas à disciplina dos órgãos e serviços da "
        "Administração. Difere do Poder de Polícia, que atinge particulares em geral."
    ),
    "area": "Administrativa",
}

DEMO_HINT = (
    "**Fundamentação Legal e Doutrinária**\nCF/88, Art. 37.\n\n"
    "**Análise da Resposta Correta**\nA administração deve obedecer aos princípios de "
    "Legalidade, Impessoalidade, Moralidade, Publicidade e Eficiência.\n\n"
    "**Análise das Alternativas Incorretas**\n- As demais opções citam princípios de "
    "direito privado ou inexistentes."
)


def _joined(values: Sequence[str], fallback: str) -> str:
    return ", ".join(values) if values else fallback


class GenerativeClient:
    """Generate practice questions and structured study hints."""

    def __init__(
        self,
        api_url: Optional[str] = None,
        *,
        api_key: Optional[str] = None,
        model_id: Optional[str] = None,
        hint_model_id: Optional[str] = None,
        timeout: Optional[float] = None,
        http=requests,
    ) -> None:
        self.api_url = GENAI_URL if api_url is None else api_url
        self.api_key = GENAI_API_KEY if api_key is None else api_key
        self.model_id = model_id or MODEL_ID
        self.hint_model_id = hint_model_id or HINT_MODEL_ID
        # None leaves the transport default in place.
        self.timeout = timeout if timeout is not None else get_env_float("GENAI_TIMEOUT")
        self._http = http

    @property
    def offline(self) -> bool:
        return not self.api_url

    # ------------------------------------------------------------------
    # question generation
    # ------------------------------------------------------------------
    async def generate_questions(
        self,
        topics: Sequence[str],
        areas: Sequence[str],
        count: int,
        difficulty: str = disciplines.DEFAULT_DIFFICULTY,
        boards: Sequence[str] = (),
        organizations: Sequence[str] = (),
    ) -> List[Dict[str, Any]]:
        """Return up to ``count`` practice-pool shaped records.

        Raises ``AugmentationFailed`` when the service call fails or the reply
        cannot be parsed at all. Individual malformed items are dropped.
        """

        if count <= 0:
            return []
        if self.offline:
            logger.warning("GENAI_URL not configured; returning %d demo questions", count)
            return self._demo_questions(topics, count, difficulty, boards, organizations)

        prompt = QUESTION_PROMPT_TEMPLATE.format(
            count=count,
            topics=_joined(topics, "Diversos temas jurídicos (Constitucional, Administrativo, Penal)"),
            areas=_joined(areas, "Áreas variadas (Administrativa, Policial, Judiciária)"),
            boards=_joined(boards, "Qualquer grande banca (FGV, Cebraspe, FCC)"),
            organizations=_joined(organizations, "Qualquer órgão público"),
            difficulty=difficulty,
            known_topics=", ".join(disciplines.topic_names()),
        )
        messages = [
            {"role": "system", "content": QUESTION_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]
        try:
            content = await self._complete(messages, model=self.model_id, temperature=0.7, json_mode=True)
        except GenerationError as exc:
            raise AugmentationFailed(str(exc)) from exc

        try:
            batch = self._parse_batch(content)
        except (ValidationError, ValueError, TypeError) as exc:
            raise AugmentationFailed("Generator returned malformed question JSON") from exc

        stamp = int(time.time() * 1000)
        records: List[Dict[str, Any]] = []
        for index, entry in enumerate(batch.questions):
            try:
                generated = GeneratedQuestion.model_validate(entry)
            except ValidationError as exc:
                logger.warning("Dropping generated question #%d: %s", index, exc.errors()[:1])
                continue
            records.append(self._to_practice_record(generated, topics, difficulty, stamp, index))
        return records[:count]

    @staticmethod
    def _parse_batch(content: str) -> GeneratedBatch:
        try:
            decoded = json.loads(content)
        except (TypeError, ValueError):
            decoded = None
        if isinstance(decoded, list):
            return GeneratedBatch(questions=decoded)
        return parse_json_safe(content, GeneratedBatch)

    @staticmethod
    def _to_practice_record(
        generated: GeneratedQuestion,
        topics: Sequence[str],
        difficulty: str,
        stamp: int,
        index: int,
    ) -> Dict[str, Any]:
        fallback_topic = topics[0] if topics else None
        topic = generated.discipline or fallback_topic or disciplines.DEFAULT_TOPIC
        category = (
            disciplines.TOPIC_TO_SLUG.get(generated.discipline or "")
            or disciplines.TOPIC_TO_SLUG.get(fallback_topic or "")
            or disciplines.DEFAULT_CATEGORY
        )
        return {
            "id": f"gen-{stamp}-{index}",
            "category": category,
            "discipline": topic,
            "subtopic": generated.subtopic,
            "statement": generated.statement,
            "options": list(generated.options),
            "correct_answer": generated.correct_index,
            "explanation": generated.explanation,
            "difficulty": difficulty,
            "area": generated.area or "Geral",
            "board": generated.board or "Simulada",
            "organization": generated.organization or "Geral",
        }

    def _demo_questions(
        self,
        topics: Sequence[str],
        count: int,
        difficulty: str,
        boards: Sequence[str],
        organizations: Sequence[str],
    ) -> List[Dict[str, Any]]:
        stamp = int(time.time() * 1000)
        records = []
        for index in range(count):
            topic = topics[index % len(topics)] if topics else "Direito Administrativo"
            demo = GeneratedQuestion(
                statement=(
                    f"(Demo data - generator not configured) {index + 1}. "
                    f"Sample question about {topic}, difficulty {difficulty}."
                ),
                discipline=topic,
                board=boards[0] if boards else None,
                organization=organizations[0] if organizations else None,
                **DEMO_QUESTION,
            )
            record = self._to_practice_record(demo, topics, difficulty, stamp, index)
            record["id"] = f"mock-{stamp}-{index}"
            records.append(record)
        return records

    # ------------------------------------------------------------------
    # study hints
    # ------------------------------------------------------------------
    async def generate_study_hint(self, topic: str, statement: str) -> str:
        """Return a three-section commentary for ``statement``.

        Raises ``HintGenerationFailed`` on transport errors or empty replies.
        """

        if self.offline:
            return DEMO_HINT

        prompt = HINT_PROMPT_TEMPLATE.format(topic=topic, statement=statement)
        try:
            content = await self._complete(
                [{"role": "user", "content": prompt}],
                model=self.hint_model_id,
                temperature=0.3,
            )
        except GenerationError as exc:
            raise HintGenerationFailed(str(exc)) from exc

        text = (content or "").strip()
        if not text:
            raise HintGenerationFailed("Generator returned an empty commentary")
        return text

    # ------------------------------------------------------------------
    # transport
    # ------------------------------------------------------------------
    async def _complete(
        self,
        messages: List[Dict[str, str]],
        *,
        model: str,
        temperature: float,
        json_mode: bool = False,
    ) -> str:
        return await asyncio.to_thread(self._post_completion, messages, model, temperature, json_mode)

    def _post_completion(
        self,
        messages: List[Dict[str, str]],
        model: str,
        temperature: float,
        json_mode: bool,
    ) -> str:
        payload: Dict[str, Any] = {"model": model, "messages": messages, "temperature": temperature}
        if json_mode:
            payload["response_format"] = {"type": "json_object"}
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        start = perf_counter()
        try:
            r = self._http.post(self.api_url, json=payload, headers=headers, timeout=self.timeout)
            if r.status_code == 400 and json_mode:
                # Fallback: backends without JSON mode reject response_format
                minimal = {"model": model, "messages": messages, "temperature": temperature}
                r = self._http.post(self.api_url, json=minimal, headers=headers, timeout=self.timeout)
            r.raise_for_status()
            data = r.json()
        except requests.HTTPError as e:
            status = getattr(getattr(e, "response", None), "status_code", "unknown")
            raise GenerationError(f"Generator HTTP {status}") from e
        except (requests.RequestException, ValueError) as e:
            raise GenerationError(f"Generator request failed: {e}") from e
        finally:
            latency_ms = int((perf_counter() - start) * 1000)
            logger.debug("Generator call to %s using %s took %d ms", self.api_url, model, latency_ms)

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            try:
                content = data["choices"][0]["text"]
            except (KeyError, IndexError, TypeError) as exc:
                raise GenerationError(f"Unexpected generator response: {str(data)[:300]}") from exc

        # refusals come back with null content
        if not isinstance(content, str) or not content.strip():
            raise GenerationError("Generator returned no content")
        return content
