# i18n.py
import json
import logging
from pathlib import Path
from typing import Optional, Any
from coach_review.config import Settings

logger = logging.getLogger(__name__)

LOCALES_DIR = Path(__file__).parent / "data" / "locales"

def lang_code2language(lang_code: Optional[str]) -> str:
	if lang_code is None:
		return Settings().default_language

	d = {"en": "english", "ru": "russian"}
	language = d.get(lang_code.split("-")[0].lower())
	if language is None or not (LOCALES_DIR / language).is_dir():
		return Settings().default_language
	return language

def available_languages() -> list[str]:
	if not LOCALES_DIR.is_dir():
		return []
	return sorted(p.name for p in LOCALES_DIR.iterdir() if p.is_dir())

class Localizer:
	"""
	Resolves dotted keys (``queue.tabs.all``) against JSON files in
	``data/locales/<lang>/``: leading parts name directories or the file, the
	rest walk the JSON object. Missing keys fall back to the default language.
	"""

	def __init__(self, lang: Optional[str] = None):
		self._templates: dict[str, str] = {}
		self.lang = lang or Settings().default_language
		self.i18n_dir = LOCALES_DIR / self.lang
		self._fallback: Optional["Localizer"] = None
		if self.lang != Settings().default_language:
			self._fallback = Localizer(Settings().default_language)

	def _load_template(self, key: str) -> str:
		parts = key.split('.')
		path = self.i18n_dir
		keys = parts.copy()

		while keys:
			k = keys.pop(0)
			dir_candidate = path / k
			if dir_candidate.is_dir():
				path = dir_candidate
				continue

			file_candidate = path / f"{k}.json"
			if not file_candidate.exists():
				raise KeyError(f"Key {key}: file {file_candidate} is not found")

			path = file_candidate
			break

		if not keys:
			raise KeyError(f"Key {key} names a file, not a message")

		with open(path, encoding="utf-8") as file:
			ans = json.load(file)

		for k in keys:
			if not isinstance(ans, dict) or k not in ans:
				raise KeyError(f"Key {key} is not found")
			ans = ans[k]

		if not isinstance(ans, str):
			raise KeyError(f"Key {key} is not a message")

		self._templates[key] = ans
		return ans

	def template(self, key: str) -> str:
		template = self._templates.get(key)
		if template is not None:
			return template
		try:
			return self._load_template(key)
		except KeyError:
			if self._fallback is None:
				raise
			logger.debug("Key %s missing for %s, using %s", key, self.lang, self._fallback.lang)
			return self._fallback.template(key)

	def get(self, key: str, **kwargs: Any) -> str:
		return self.template(key).format(**kwargs)

	def get_or(self, key: str, default: str, **kwargs: Any) -> str:
		try:
			return self.get(key, **kwargs)
		except KeyError:
			return default

	def __call__(self, key: str, **kwargs: Any) -> str:
		return self.get(key, **kwargs)
