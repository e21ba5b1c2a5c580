"""External narrative-judgement capability used by validation and standardization."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from functools import lru_cache
from http import client as http_client
from pathlib import Path
from typing import Protocol
from urllib import error as urllib_error
from urllib import request as urllib_request

from profile_reconciler.errors import ValidationDegraded

JUDGE_PROMPT_VERSION = "judge.v1"
_PROMPT_FILES: dict[str, Path] = {
    "judge.v1": Path(__file__).resolve().parent / "prompts" / "judge_v1.txt",
}
_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class NarrativeJudge(Protocol):
    """Protocol for pluggable judgement clients.

    Implementations return the model's raw text. The text is expected to be a
    JSON object but callers must tolerate anything.
    """

    def judge(self, prompt: str) -> str:
        """Return the judgement text for one prompt."""


@dataclass(slots=True)
class OpenAIChatCompletionsJudge:
    """Minimal OpenAI-compatible Chat Completions client using stdlib HTTP."""

    api_key: str
    model: str
    base_url: str = "https://api.openai.com/v1"
    timeout_seconds: int = 20

    def judge(self, prompt: str) -> str:
        """Send one prompt and return the assistant message content."""

        payload = {
            "model": self.model,
            "temperature": 0.3,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": load_prompt(JUDGE_PROMPT_VERSION)},
                {"role": "user", "content": prompt},
            ],
        }
        url = f"{self.base_url.rstrip('/')}/chat/completions"
        req = urllib_request.Request(
            url=url,
            data=json.dumps(payload).encode("utf-8"),
            method="POST",
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
        )

        try:
            with urllib_request.urlopen(req, timeout=self.timeout_seconds) as resp:
                raw = resp.read().decode("utf-8")
        except urllib_error.HTTPError as exc:
            detail = exc.read().decode("utf-8", errors="replace")
            raise ValidationDegraded(f"Judge HTTP {exc.code}: {detail}") from exc
        except urllib_error.URLError as exc:
            raise ValidationDegraded(f"Judge request failed: {exc.reason}") from exc
        except TimeoutError as exc:
            raise ValidationDegraded(f"Judge request timed out after {self.timeout_seconds}s") from exc
        except (OSError, http_client.HTTPException, UnicodeDecodeError) as exc:
            raise ValidationDegraded(f"Judge response could not be read: {exc!r}") from exc

        try:
            decoded = json.loads(raw)
            content = decoded["choices"][0]["message"]["content"]
            if not isinstance(content, str):
                raise TypeError("Judge response content is not a string")
            return content
        except (KeyError, IndexError, TypeError, json.JSONDecodeError) as exc:
            raise ValidationDegraded("Judge returned an unexpected response envelope") from exc


@lru_cache(maxsize=8)
def load_prompt(version: str) -> str:
    prompt_file = _PROMPT_FILES.get(version)
    if prompt_file is None:
        raise ValidationDegraded(f"Judge prompt version is not registered: {version}")
    try:
        prompt_text = prompt_file.read_text(encoding="utf-8").strip()
    except OSError as exc:
        raise ValidationDegraded(f"Failed to load judge prompt file: {prompt_file}") from exc
    if not prompt_text:
        raise ValidationDegraded(f"Judge prompt file is empty: {prompt_file}")
    return prompt_text


def strip_code_fence(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""

    return _CODE_FENCE_RE.sub("", text.strip()).strip()
