import re

from core.errors import ValidationError

PLAYERS_PER_TEAM = 12
TEAM_TYPES = ('male', 'female')
UDISE_STATUSES = ('verified', 'pending', 'not_applicable', '')
MATCH_STATUSES = ('upcoming', 'ongoing', 'completed')
AADHAAR_RE = re.compile(r'^\d{12}$')


def _text(value):
    return str(value).strip() if value is not None else ''


def _ref(value):
    """Team references are always compared and stored as strings."""
    if value is None or value == '':
        return None
    return str(value)


class Player:
    def __init__(self, name, father_name, aadhaar, player_class, dob, pen='', udise_status=''):
        self.name = name
        self.father_name = father_name
        self.aadhaar = aadhaar
        self.player_class = player_class
        self.dob = dob
        self.pen = pen
        self.udise_status = udise_status

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(
            name=_text(data.get('name')),
            father_name=_text(data.get('father_name')),
            aadhaar=_text(data.get('aadhaar')),
            player_class=_text(data.get('class')),
            dob=_text(data.get('dob')),
            pen=_text(data.get('pen')),
            udise_status=_text(data.get('udise_status')),
        )

    def validate(self, number):
        if not self.name:
            raise ValidationError(f'Player {number}: Name is required.')
        if not self.father_name:
            raise ValidationError(f"Player {number}: Father's name is required.")
        if not AADHAAR_RE.match(self.aadhaar):
            raise ValidationError(f'Player {number}: Valid 12-digit Aadhaar number is required.')
        if not self.player_class:
            raise ValidationError(f'Player {number}: Class is required.')
        if not self.dob:
            raise ValidationError(f'Player {number}: Date of birth is required.')
        if self.udise_status not in UDISE_STATUSES:
            raise ValidationError(f'Player {number}: Unknown UDISE status "{self.udise_status}".')

    def to_dict(self):
        return {
            'name': self.name,
            'father_name': self.father_name,
            'aadhaar': self.aadhaar,
            'class': self.player_class,
            'dob': self.dob,
            'pen': self.pen,
            'udise_status': self.udise_status,
        }

    def __repr__(self):
        return f"Player(name={self.name}, class={self.player_class})"


class Team:
    def __init__(self, school_name, team_type, coach_name, coach_number, players=None, id=None):
        self.id = id
        self.school_name = school_name
        self.team_type = team_type
        self.coach_name = coach_name
        self.coach_number = coach_number
        self.players = players if players else []

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        players = data.get('players') or []
        return cls(
            id=data.get('id'),
            school_name=_text(data.get('school_name')),
            team_type=_text(data.get('team_type')),
            coach_name=_text(data.get('coach_name')),
            coach_number=_text(data.get('coach_number')),
            players=[Player.from_dict(p) for p in players if isinstance(p, dict)],
        )

    def validate(self):
        """Raise ValidationError on the first problem, in form order."""
        if not self.school_name or not self.team_type or not self.coach_name or not self.coach_number:
            raise ValidationError('Please fill in all school and coach information.')
        if self.team_type not in TEAM_TYPES:
            raise ValidationError(f'Team type must be one of: {", ".join(TEAM_TYPES)}.')
        if len(self.players) != PLAYERS_PER_TEAM:
            raise ValidationError(f'A team must have exactly {PLAYERS_PER_TEAM} players.')
        for index, player in enumerate(self.players, start=1):
            player.validate(index)

    def to_row(self):
        return {
            'school_name': self.school_name,
            'team_type': self.team_type,
            'coach_name': self.coach_name,
            'coach_number': self.coach_number,
            'player_count': PLAYERS_PER_TEAM,
            'players': [p.to_dict() for p in self.players],
        }

    def __repr__(self):
        return f"Team(id={self.id}, school_name={self.school_name}, team_type={self.team_type})"


class Pool:
    def __init__(self, name, team_type, team_ids=None, id=None):
        self.id = id
        self.name = name
        self.team_type = team_type
        self.team_ids = team_ids if team_ids else []

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        team_ids = []
        for tid in data.get('team_ids') or []:
            ref = _ref(tid)
            if ref is not None and ref not in team_ids:
                team_ids.append(ref)
        return cls(
            id=data.get('id'),
            name=_text(data.get('name')),
            team_type=_text(data.get('team_type')),
            team_ids=team_ids,
        )

    def validate(self):
        if not self.name:
            raise ValidationError('Pool name is required.')
        if self.team_type not in TEAM_TYPES:
            raise ValidationError(f'Team type must be one of: {", ".join(TEAM_TYPES)}.')
        if len(self.team_ids) < 2:
            raise ValidationError('Please select at least 2 teams')

    def has_team(self, team_id):
        return _ref(team_id) in self.team_ids

    def to_row(self):
        return {'name': self.name, 'team_type': self.team_type, 'team_ids': list(self.team_ids)}

    def __repr__(self):
        return f"Pool(id={self.id}, name={self.name}, team_ids={self.team_ids})"


class Match:
    def __init__(self, pool_id, team1_id, team2_id, team_type, status='upcoming',
                 match_order=None, match_number=None, winner_id=None, score=None,
                 id=None, created_at=None, updated_at=None):
        self.id = id
        self.pool_id = pool_id
        self.team1_id = _ref(team1_id)
        self.team2_id = _ref(team2_id)
        self.team_type = team_type
        self.status = status
        self.match_order = match_order
        self.match_number = match_number
        self.winner_id = _ref(winner_id)
        self.score = score
        self.created_at = created_at
        self.updated_at = updated_at

    @classmethod
    def from_dict(cls, data):
        data = data or {}
        return cls(
            id=data.get('id'),
            pool_id=data.get('pool_id'),
            team1_id=data.get('team1_id'),
            team2_id=data.get('team2_id'),
            team_type=data.get('team_type'),
            status=data.get('status') or 'upcoming',
            match_order=data.get('match_order'),
            match_number=data.get('match_number'),
            winner_id=data.get('winner_id'),
            score=data.get('score'),
            created_at=data.get('created_at'),
            updated_at=data.get('updated_at'),
        )

    @property
    def team_ids(self):
        return (self.team1_id, self.team2_id)

    def involves(self, team_id):
        return _ref(team_id) in self.team_ids

    def opponent_of(self, team_id):
        ref = _ref(team_id)
        if ref == self.team1_id:
            return self.team2_id
        if ref == self.team2_id:
            return self.team1_id
        return None

    def to_row(self):
        return {
            'pool_id': self.pool_id,
            'team1_id': self.team1_id,
            'team2_id': self.team2_id,
            'team_type': self.team_type,
            'status': self.status,
            'match_order': self.match_order,
            'match_number': self.match_number,
            'winner_id': self.winner_id,
            'score': self.score,
        }

    def __repr__(self):
        return (f"Match(id={self.id}, {self.team1_id} vs {self.team2_id}, status={self.status}, "
                f"order={self.match_order}, number={self.match_number})")


def public_user(row):
    """User row without credentials."""
    return {k: v for k, v in row.items() if k not in ('password', 'password_hash')}
