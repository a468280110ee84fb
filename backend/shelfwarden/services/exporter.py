"""Export service for generating CSV and JSON candidate reports."""

import csv
import io
import json
from typing import Any

CANDIDATE_COLUMNS = [
    "id",
    "rule_name",
    "media_type",
    "media_item_key",
    "title",
    "year",
    "file_size_mb",
    "play_count",
    "last_watched_at",
    "added_at",
    "review_status",
    "flagged_at",
    "reviewed_by",
    "review_note",
    "deleted_at",
    "deletion_error",
]


class Exporter:
    """Service for exporting maintenance data to various formats."""

    @staticmethod
    def to_csv(data: list[dict], columns: list[str] = None) -> str:
        """
        Export data to CSV format.

        Args:
            data: List of dictionaries to export
            columns: Optional list of column names to include (default: all keys)

        Returns:
            CSV string
        """
        if columns is None:
            if not data:
                return ""
            columns = list(data[0].keys())

        output = io.StringIO()
        writer = csv.DictWriter(output, fieldnames=columns, extrasaction="ignore")
        writer.writeheader()
        writer.writerows(data)

        return output.getvalue()

    @staticmethod
    def to_json(data: list[dict], pretty: bool = True) -> str:
        """Export data to JSON format."""
        if pretty:
            return json.dumps(data, indent=2, default=str)
        return json.dumps(data, default=str)

    @staticmethod
    def candidates_to_export_format(candidates: list[Any]) -> list[dict]:
        """
        Convert candidates to flat export dictionaries.

        Args:
            candidates: CandidateResponse models or plain dicts

        Returns:
            List of flat dictionaries suitable for export
        """
        result = []

        for candidate in candidates:
            if isinstance(candidate, dict):
                result.append(candidate)
                continue

            file_size = getattr(candidate, "file_size", None)
            media_type = getattr(candidate, "media_type", None)
            review_status = getattr(candidate, "review_status", None)
            result.append(
                {
                    "id": candidate.id,
                    "rule_name": getattr(candidate, "rule_name", None),
                    "media_type": getattr(media_type, "value", media_type),
                    "media_item_key": candidate.media_item_key,
                    "title": candidate.title,
                    "year": getattr(candidate, "year", None),
                    "file_size_mb": (
                        round(file_size / (1024 * 1024), 2) if file_size is not None else None
                    ),
                    "play_count": getattr(candidate, "play_count", 0),
                    "last_watched_at": getattr(candidate, "last_watched_at", None),
                    "added_at": getattr(candidate, "added_at", None),
                    "review_status": getattr(review_status, "value", review_status),
                    "flagged_at": getattr(candidate, "flagged_at", None),
                    "reviewed_by": getattr(candidate, "reviewed_by", None),
                    "review_note": getattr(candidate, "review_note", None),
                    "deleted_at": getattr(candidate, "deleted_at", None),
                    "deletion_error": getattr(candidate, "deletion_error", None),
                }
            )

        return result

    @classmethod
    def export_candidates_csv(cls, candidates: list[Any]) -> str:
        data = cls.candidates_to_export_format(candidates)
        return cls.to_csv(data, CANDIDATE_COLUMNS)

    @classmethod
    def export_candidates_json(cls, candidates: list[Any]) -> str:
        data = cls.candidates_to_export_format(candidates)
        return cls.to_json(data)
