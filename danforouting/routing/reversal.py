"""
Direction reversal for stored routes and segments.

Instruction rewriting is plain phrase substitution and only covers the
phrases below. Other directional wording, such as "heading towards X",
is left as written.
"""

import re
from dataclasses import replace
from typing import List

from ..models.route_segments import IntermediateStop, RouteSegment, RouteStep

DISCLOSURE_NOTE = "**Note:** This route has been automatically reversed from the original direction.\n\n"
REVERSED_SUFFIX = '_rev'

_FROM_TO = re.compile(r'\b(from) (.+?) to (.+?):', re.IGNORECASE)
_START_POINT = re.compile(r'\b(At the) (starting point|destination)\b', re.IGNORECASE)
_START_TAG = re.compile(r'\((start|destination)\)', re.IGNORECASE)
_AFTER_PASSING = re.compile(r'\b(after passing) (.+?) and (.+?),', re.IGNORECASE)


def _swap_word(word: str, a: str, b: str) -> str:
    """Swap ``a`` and ``b``, keeping the matched word's casing"""
    swapped = b if word.lower() == a else a
    if word.isupper():
        return swapped.upper()
    if word.istitle():
        return swapped.title()
    if word[0].isupper():
        return swapped.capitalize()
    return swapped


def strip_disclosure(text: str) -> str:
    if text and text.startswith(DISCLOSURE_NOTE):
        return text[len(DISCLOSURE_NOTE):]
    return text or ''


def is_reversed_text(text: str) -> bool:
    return bool(text) and text.startswith(DISCLOSURE_NOTE)


def reverse_instructions(text: str) -> str:
    """Rewrite directional phrases for travel in the opposite direction.

    Reversing already-reversed text drops the disclosure note again, so
    applying this twice gives back the original text.
    """
    if not text:
        return ''
    was_reversed = is_reversed_text(text)
    body = strip_disclosure(text)

    body = _FROM_TO.sub(lambda m: f"{m.group(1)} {m.group(3)} to {m.group(2)}:", body)
    body = _START_POINT.sub(
        lambda m: f"{m.group(1)} {_swap_word(m.group(2), 'starting point', 'destination')}", body)
    body = _START_TAG.sub(lambda m: f"({_swap_word(m.group(1), 'start', 'destination')})", body)
    body = _AFTER_PASSING.sub(lambda m: f"{m.group(1)} {m.group(3)} and {m.group(2)},", body)

    return body if was_reversed else DISCLOSURE_NOTE + body


def _toggle_id(value: str) -> str:
    if value and value.endswith(REVERSED_SUFFIX):
        return value[:-len(REVERSED_SUFFIX)]
    return f"{value}{REVERSED_SUFFIX}"


def reverse_steps(steps: List[RouteStep]) -> List[RouteStep]:
    """Reverse step order, swap each step's endpoints and renumber from 1.

    Fares, distances and modes are direction independent and copied as is.
    """
    ordered = sorted(steps, key=lambda s: s.order, reverse=True)
    return [
        replace(
            step,
            id=_toggle_id(step.id),
            order=index,
            from_location=step.to_location,
            to_location=step.from_location,
            instructions=reverse_instructions(step.instructions),
            landmarks=list(reversed(step.landmarks)),
            fare=None,
        )
        for index, step in enumerate(ordered, start=1)
    ]


def reverse_segment(segment: RouteSegment) -> RouteSegment:
    """View of ``segment`` ridden end to start"""
    stops = sorted(segment.intermediate_stops, key=lambda s: s.order, reverse=True)
    return replace(
        segment,
        id=_toggle_id(segment.id),
        name=f"{segment.end.name} to {segment.start.name}",
        start=segment.end,
        end=segment.start,
        intermediate_stops=[
            IntermediateStop(name=s.name, order=i, coordinate=s.coordinate,
                             location_id=s.location_id, is_optional=s.is_optional)
            for i, s in enumerate(stops, start=1)
        ],
        landmarks=list(reversed(segment.landmarks)),
        instructions=reverse_instructions(segment.instructions),
        usage_count=0,
    )
