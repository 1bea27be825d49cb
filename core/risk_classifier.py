import math
from typing import List, Sequence

from .models import RiskAssessment, RiskCategory, RiskLevelInfo


class RiskClassifier:
    """
    Maps a temperature measurement onto the ordered set of risk categories.

    Classification is total: values in the gap between one band's max and the
    next band's min belong to the next band and values above the top band
    saturate to the top category. Values below the bottom band, and NaN, map to
    the bottom category.
    """

    def __init__(self, categories: Sequence[RiskCategory] = tuple(RiskCategory)):
        if not categories:
            raise ValueError("At least one risk category is required")
        self._categories: List[RiskCategory] = list(categories)

    @property
    def categories(self) -> List[RiskCategory]:
        return list(self._categories)

    def classify(self, measurement: float) -> RiskCategory:
        """Return the category for a measurement; never fails."""
        if math.isnan(measurement):
            return self._categories[0]
        for category in self._categories:
            # A band owns everything up to and including its max
            if measurement <= category.band.max_temperature:
                return category
        return self._categories[-1]

    def requires_immediate_action(self, category: RiskCategory) -> bool:
        """True only for the two most severe categories."""
        return category in self._categories[-2:]

    def assess(self, measurement: float) -> RiskAssessment:
        category = self.classify(measurement)
        return RiskAssessment(
            measurement=measurement,
            category=category,
            description=category.description,
            recommended_action=category.recommended_action,
            requires_immediate_action=self.requires_immediate_action(category),
        )

    def describe_levels(self) -> List[RiskLevelInfo]:
        """Category table, least to most severe."""
        return [
            RiskLevelInfo(
                category=category,
                min_temperature=category.band.min_temperature,
                max_temperature=category.band.max_temperature,
                description=category.description,
                recommended_action=category.recommended_action,
                requires_immediate_action=self.requires_immediate_action(category),
            )
            for category in self._categories
        ]
