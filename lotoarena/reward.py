from typing import Dict, Sequence, Type

HOT_BONUS_FACTOR = 0.1


class RewardPolicy:
    """Maps a match count to a reward. Subclasses implement base_reward()."""

    name = "base"

    def __init__(self, hot_bonus: bool = False):
        self.hot_bonus = hot_bonus

    def base_reward(self, matches: int) -> float:
        raise NotImplementedError

    def __call__(self, matches: int, hot_numbers: Sequence[int] = (), board_numbers: Sequence[int] = ()) -> float:
        value = float(self.base_reward(matches))
        if self.hot_bonus:
            hot_on_board = len(set(hot_numbers) & set(board_numbers))
            value += matches * hot_on_board * HOT_BONUS_FACTOR
        return value

    def __repr__(self):
        return f"{type(self).__name__}(hot_bonus={self.hot_bonus})"


class StrictThresholdReward(RewardPolicy):
    """11..15 matches pay matches-10, anything else pays nothing."""

    name = "strict"
    band = (11, 15)

    def base_reward(self, matches: int) -> float:
        low, high = self.band
        return matches - 10 if low <= matches <= high else 0


class ExponentialReward(RewardPolicy):
    """Doubling payout: 2**m below 11, 1000 at 11, then doubling from 1000."""

    name = "exponential"

    def base_reward(self, matches: int) -> float:
        if matches == 11:
            return 1000
        if matches > 11:
            return 2 ** (matches - 11) * 1000
        return 2 ** matches if matches > 0 else 0


class PenalizedBandReward(StrictThresholdReward):
    """Strict band payout with a linear penalty below it."""

    name = "penalized"

    def __init__(self, hot_bonus: bool = False, penalty: float = 0.1):
        super().__init__(hot_bonus=hot_bonus)
        self.penalty = penalty

    def base_reward(self, matches: int) -> float:
        low, _ = self.band
        if matches < low:
            return -(low - matches) * self.penalty
        return super().base_reward(matches)


REWARD_POLICIES: Dict[str, Type[RewardPolicy]] = {
    StrictThresholdReward.name: StrictThresholdReward,
    ExponentialReward.name: ExponentialReward,
    PenalizedBandReward.name: PenalizedBandReward,
}


def get_reward_policy(name: str = "strict", hot_bonus: bool = False) -> RewardPolicy:
    if name not in REWARD_POLICIES:
        raise ValueError(f"Unknown reward policy '{name}'. Choose from {sorted(REWARD_POLICIES)}")
    return REWARD_POLICIES[name](hot_bonus=hot_bonus)


def reward(matches: int, hot_numbers: Sequence[int] = (), board_numbers: Sequence[int] = (),
           policy: str = "strict", hot_bonus: bool = False) -> float:
    return get_reward_policy(policy, hot_bonus)(matches, hot_numbers, board_numbers)
