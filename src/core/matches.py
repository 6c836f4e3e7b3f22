"""
Match lifecycle, display order and permanent numbering.

Everything here is pure: functions take Match objects (or rows) and return
new values or the list of changes to persist. The console applies them.

Lifecycle::

    upcoming -> ongoing -> completed
    upcoming ---------------> completed

A completed match never leaves that state; only its result is edited.
"""
from itertools import combinations

from core.errors import ValidationError
from core.models import Match

UPCOMING = 'upcoming'
ONGOING = 'ongoing'
COMPLETED = 'completed'

TRANSITIONS = {
    UPCOMING: {ONGOING, COMPLETED},
    ONGOING: {COMPLETED},
    COMPLETED: set(),
}

SCORE_SEPARATOR = ' - '


def _as_match(m):
    return m if isinstance(m, Match) else Match.from_dict(m)


def can_transition(current, target) -> bool:
    return target in TRANSITIONS.get(current, set())


def is_open(match) -> bool:
    """Upcoming or ongoing: the matches that take part in ordering."""
    return match.status in (UPCOMING, ONGOING)


def filter_by_type(matches, team_type=None):
    matches = [_as_match(m) for m in matches]
    if not team_type:
        return matches
    return [m for m in matches if m.team_type == team_type]


def upcoming_matches(matches, team_type=None):
    """Non-completed matches sorted by display order."""
    selected = [m for m in filter_by_type(matches, team_type) if is_open(m)]
    return sorted(selected, key=lambda m: (m.match_order or 0, m.id or 0))


def past_matches(matches, team_type=None):
    """Completed matches, most recently updated first."""
    selected = [m for m in filter_by_type(matches, team_type) if m.status == COMPLETED]
    return sorted(selected, key=lambda m: str(m.updated_at or m.created_at or ''), reverse=True)


def max_completed_number(matches, team_type=None) -> int:
    """Highest number taken by a completed match, 0 when there are none.

    A match completed before any order was saved has no number; its
    match_order stands in so later numbers never fall below it.
    """
    numbers = []
    for m in filter_by_type(matches, team_type):
        if m.status != COMPLETED:
            continue
        taken = m.match_number if m.match_number is not None else m.match_order
        if isinstance(taken, int):
            numbers.append(taken)
    return max(numbers) if numbers else 0


def next_match_order(matches, team_type=None) -> int:
    """Order for a newly fixed match: one past the end of the open list."""
    orders = [m.match_order or 0 for m in upcoming_matches(matches, team_type)]
    return (max(orders) if orders else 0) + 1


def display_number(match):
    """The stored permanent number, or '-' for matches not yet numbered."""
    match = _as_match(match)
    return match.match_number if match.match_number is not None else '-'


def reorder(match_ids, match_id, new_index):
    """Move match_id to new_index (clamped) and return the new id list."""
    ids = list(match_ids)
    if match_id not in ids:
        raise ValidationError(f'Match {match_id} is not in the upcoming list.')
    ids.remove(match_id)
    try:
        new_index = int(new_index)
    except (TypeError, ValueError):
        raise ValidationError('Invalid position')
    new_index = max(0, min(new_index, len(ids)))
    ids.insert(new_index, match_id)
    return ids


def assign_match_numbers(ordered_ids, completed_max):
    """Return [(match_id, match_order, match_number)] for a saved upcoming order.

    Orders run 1..N; numbers continue after the highest completed number.
    """
    return [(match_id, position, completed_max + position)
            for position, match_id in enumerate(ordered_ids, start=1)]


def plan_order_save(matches, ordered_ids, team_type=None):
    """Validate a submitted order against the open list of a partition.

    ordered_ids must be a permutation of the open matches' ids.
    """
    open_ids = [m.id for m in upcoming_matches(matches, team_type)]
    if not ordered_ids:
        raise ValidationError('No matches to save')
    if len(set(ordered_ids)) != len(ordered_ids) or set(ordered_ids) != set(open_ids):
        raise ValidationError('Order must list every upcoming match exactly once.')
    return assign_match_numbers(ordered_ids, max_completed_number(matches, team_type))


def format_score(team1_score, team2_score):
    return f'{_score_part(team1_score)}{SCORE_SEPARATOR}{_score_part(team2_score)}'


def _score_part(value):
    return '' if value is None else str(value).strip()


def split_score(score):
    """Split a stored score back into its two sides; missing sides read as '0'."""
    if not score:
        return ['0', '0']
    parts = [p.strip() for p in str(score).split(SCORE_SEPARATOR.strip(), 1)]
    if len(parts) < 2:
        parts.append('0')
    return parts


def resolve_score(score=None, team1_score=None, team2_score=None):
    """Accept either a full score string or the two sides separately."""
    if score is not None and str(score).strip():
        return str(score)
    if _score_part(team1_score) == '' or _score_part(team2_score) == '':
        raise ValidationError('Please enter both scores')
    return format_score(team1_score, team2_score)


def check_winner(match, winner_id):
    match = _as_match(match)
    if winner_id is None or str(winner_id).strip() == '':
        raise ValidationError('Please select a winner')
    if str(winner_id) not in match.team_ids:
        raise ValidationError('Winner must be one of the two teams in the match.')
    return str(winner_id)


def completion_changes(match, winner_id, score):
    """Changes that complete an open match."""
    match = _as_match(match)
    if match.status == COMPLETED:
        raise ValidationError('Match is already completed. Edit the result instead.')
    if not can_transition(match.status, COMPLETED):
        raise ValidationError(f'Cannot complete a match that is {match.status}.')
    winner = check_winner(match, winner_id)
    if score is None or not str(score).strip():
        raise ValidationError('Please enter the score')
    return {'status': COMPLETED, 'winner_id': winner, 'score': score}


def start_changes(match):
    match = _as_match(match)
    if not can_transition(match.status, ONGOING):
        raise ValidationError(f'Cannot start a match that is {match.status}.')
    return {'status': ONGOING}


def result_edit_changes(match, winner_id, score, match_number=None):
    """Changes for correcting a completed match. Never touches other matches."""
    match = _as_match(match)
    if match.status != COMPLETED:
        raise ValidationError('Only completed matches can have their result edited.')
    changes = {'winner_id': check_winner(match, winner_id)}
    if score is None or not str(score).strip():
        raise ValidationError('Please enter the score')
    changes['score'] = score
    if match_number is not None and match_number != '':
        try:
            number = int(match_number)
        except (TypeError, ValueError):
            raise ValidationError('Match number must be a whole number.')
        if number < 1:
            raise ValidationError('Match number must be at least 1.')
        changes['match_number'] = number
    return changes


def new_fixed_match(pool, team1_id, team2_id, existing_matches):
    """Build the row for a match fixed between two teams of a pool."""
    if not team1_id or not team2_id:
        raise ValidationError('Please select both teams')
    if str(team1_id) == str(team2_id):
        raise ValidationError('Please select different teams')
    if not pool.has_team(team1_id) or not pool.has_team(team2_id):
        raise ValidationError('Both teams must belong to the pool.')
    match = Match(
        pool_id=pool.id,
        team1_id=team1_id,
        team2_id=team2_id,
        team_type=pool.team_type,
        status=UPCOMING,
        match_order=next_match_order(existing_matches, pool.team_type),
    )
    return match.to_row()


def round_robin_rows(pool, existing_matches):
    """Rows for every pairing in the pool that has no match yet."""
    existing = filter_by_type(existing_matches, pool.team_type)
    taken = {frozenset(m.team_ids) for m in existing if m.pool_id == pool.id}
    order = next_match_order(existing, pool.team_type)
    rows = []
    for team1_id, team2_id in combinations(pool.team_ids, 2):
        if frozenset((team1_id, team2_id)) in taken:
            continue
        rows.append(Match(
            pool_id=pool.id,
            team1_id=team1_id,
            team2_id=team2_id,
            team_type=pool.team_type,
            status=UPCOMING,
            match_order=order,
        ).to_row())
        order += 1
    return rows
