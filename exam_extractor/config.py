"""
Exam Profiles
=============
Loads the extraction context for an exam from a JSON profile file:

    {
      "exams": [
        {
          "examName": "SSC CGL",
          "examKey": ["ssc", "cgl"],        # string or list
          "years": ["2022", "23"],
          "fullName": "SSC Combined Graduate Level",
          "knownSubjects": ["Quantitative Aptitude", ...],
          "commonTopics": ["Percentages", ...]
        }
      ]
    }

Profile lookup: exact name, then name containment, then a profile whose
key tokens all occur in the requested name, then the first profile.
Without a file the built-in default profile is used.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError

from .exceptions import ConfigurationError
from .models import ExtractionContext

logger = logging.getLogger(__name__)

DEFAULT_PROFILE: dict[str, Any] = {
    "examName": "Government Competitive Examination",
    "examKey": [],
    "fullName": "Government Competitive Examination",
    "description": "General government competitive examination",
    "knownSubjects": [
        "Reasoning", "General Knowledge", "Quantitative Aptitude", "English",
    ],
    "commonTopics": [
        "Logical Reasoning", "Verbal Reasoning", "Mathematical Reasoning",
        "Current Affairs", "General Science", "History", "Geography",
        "Polity", "Arithmetic", "Algebra", "Geometry", "Statistics",
        "Grammar", "Vocabulary", "Comprehension",
    ],
    "years": [],
}


def context_from_profile(
    profile: dict[str, Any],
    strict_filtering: bool = False,
) -> ExtractionContext:
    """Build an ExtractionContext from one profile entry."""
    try:
        return ExtractionContext(
            exam_name=profile.get("examName", ""),
            exam_keys=profile.get("examKey") or [],
            full_name=profile.get("fullName") or profile.get("label") or "",
            year=profile.get("year"),
            description=profile.get("description", ""),
            known_subjects=profile.get("knownSubjects") or [],
            common_topics=profile.get("commonTopics") or [],
            allowed_years=profile.get("years") or [],
            strict_filtering=bool(
                profile.get("strictFiltering", strict_filtering)
            ),
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid exam profile: {e}") from e


def find_profile(
    profiles: list[dict[str, Any]],
    exam_name: Optional[str] = None,
) -> Optional[dict[str, Any]]:
    if not profiles:
        return None
    if not exam_name:
        return profiles[0]

    wanted = exam_name.strip().lower()
    for profile in profiles:
        if str(profile.get("examName", "")).lower() == wanted:
            return profile
    for profile in profiles:
        name = str(profile.get("examName", "")).lower()
        if name and (wanted in name or name in wanted):
            return profile
    for profile in profiles:
        keyed = context_from_profile(profile)
        if keyed.exam_keys and keyed.matches_category(wanted):
            return profile

    logger.warning(
        f"No exam profile matches '{exam_name}', using first profile"
    )
    return profiles[0]


def load_exam_context(
    config_path: Optional[Union[str, Path]] = None,
    exam_name: Optional[str] = None,
    strict_filtering: bool = False,
) -> ExtractionContext:
    """
    Load the extraction context for ``exam_name``.

    Raises:
        ConfigurationError: If the file exists but cannot be parsed.
    """
    profile: Optional[dict[str, Any]] = None

    if config_path:
        path = Path(config_path)
        if not path.exists():
            raise ConfigurationError(f"Config file not found: {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read config {path}: {e}") from e
        exams = data.get("exams") if isinstance(data, dict) else None
        if not isinstance(exams, list):
            raise ConfigurationError(f"Config {path} has no 'exams' list")
        profile = find_profile(exams, exam_name)

    if profile is None:
        profile = dict(DEFAULT_PROFILE)
        if exam_name:
            profile["examName"] = exam_name
            profile["fullName"] = exam_name

    context = context_from_profile(profile, strict_filtering=strict_filtering)
    logger.info(
        f"Exam context: {context.display_name} | "
        f"keys={sorted(context.exam_keys)} | "
        f"years={sorted(context.allowed_years)} | "
        f"strict={context.strict_filtering}"
    )
    return context
