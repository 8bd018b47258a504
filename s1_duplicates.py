import dataclasses

from s1_api import Agent


@dataclasses.dataclass(frozen=True)
class Candidate:
    computer_name: str
    agent: Agent
    keep: Agent


def as_int(v, default=0):
    # Agent ids are 19-digit integers; a float round-trip would collapse neighbours.
    if v is None:
        return default
    s = str(v).strip()
    if s.isdigit():
        return int(s)
    return default


def sort_key(agent):
    # Ties on updatedAt fall back to agent id; highest id is treated as newest.
    return (agent.updated, as_int(agent.id, 0))


def find_duplicates(roster, tally):
    """
    Group the roster by computer name, keeping only names seen more than once.
    Groups come back in first-seen order and members in roster order.
    """
    groups = {}
    for agent in roster:
        if tally.get(agent.computer_name, 0) > 1:
            groups.setdefault(agent.computer_name, []).append(agent)
    return groups


def pick_keep_and_removes(items):
    """
    Keep the most recently updated agent; everything else is a removal.
    sorted() is stable so exact ties keep fetch order.
    """
    items_sorted = sorted(items, key=sort_key)
    return items_sorted[-1], items_sorted[:-1]


def candidates_from_groups(groups):
    candidates = []
    for name, items in groups.items():
        keep, removes = pick_keep_and_removes(items)
        for agent in removes:
            candidates.append(Candidate(computer_name=name, agent=agent, keep=keep))
    return candidates


def select_candidates(roster, tally):
    return candidates_from_groups(find_duplicates(roster, tally))
