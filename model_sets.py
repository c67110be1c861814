"""
Model specifications and the two fixed candidate sets.

Structural set (per response):
    Year*Site, Year, Site, Null

Mechanism set:
    every sub-model of a global model with up to three continuous predictors
    and their pairwise interactions that respects marginality, i.e. an
    interaction a:b is only present when both a and b are present.
    For EVI, GDD, NDMI with all three pairs that is 1 + 3 + 3*2 + 2**3 = 18.
"""

from dataclasses import dataclass, field
from itertools import combinations

MAX_PREDICTORS = 3
NULL_LABEL = "Null"


def interaction_name(a: str, b: str) -> str:
    return f"{a}:{b}"


def term_parts(term: str):
    """'EVI:GDD' -> ('EVI', 'GDD'); 'EVI' -> ('EVI',)."""
    return tuple(p.strip() for p in term.split(":"))


def is_interaction(term: str) -> bool:
    return len(term_parts(term)) > 1


# ----------------------------
# Specifications
# ----------------------------
@dataclass(frozen=True)
class ModelSpec:
    label: str
    response: str
    terms: tuple = ()
    family: str = "gaussian"

    @property
    def formula(self) -> str:
        rhs = " + ".join(self.terms) if self.terms else "1"
        return f"{self.response} ~ {rhs}"

    @property
    def predictors(self):
        """Main-effect variables referenced by any term."""
        seen = []
        for t in self.terms:
            for p in term_parts(t):
                if p not in seen:
                    seen.append(p)
        return tuple(seen)

    def has_term(self, term: str) -> bool:
        return term in self.terms


def structural_set(response: str):
    """Temporal vs spatial structure, tested before any mechanism."""
    return [
        ModelSpec("Year*Site", response, ("Year", "Site", interaction_name("Year", "Site"))),
        ModelSpec("Year", response, ("Year",)),
        ModelSpec("Site", response, ("Site",)),
        ModelSpec(NULL_LABEL, response, ()),
    ]


# ----------------------------
# Global mechanism model
# ----------------------------
@dataclass(frozen=True)
class GlobalModel:
    response: str
    predictors: tuple
    interactions: tuple = field(default=())

    def __post_init__(self):
        preds = tuple(self.predictors)
        if len(preds) > MAX_PREDICTORS:
            raise ValueError(f"Global model allows at most {MAX_PREDICTORS} predictors, got {preds}")
        if len(set(preds)) != len(preds):
            raise ValueError(f"Duplicate predictors in global model: {preds}")

        pairs = []
        for inter in self.interactions:
            parts = term_parts(inter) if isinstance(inter, str) else tuple(inter)
            if len(parts) != 2:
                raise ValueError(f"Only pairwise interactions are allowed, got {inter!r}")
            a, b = parts
            if a == b or a not in preds or b not in preds:
                raise ValueError(f"Interaction {inter!r} must join two distinct global predictors {preds}")
            # canonical order follows the predictor order
            a, b = sorted((a, b), key=preds.index)
            if (a, b) not in pairs:
                pairs.append((a, b))

        pairs.sort(key=lambda ab: (preds.index(ab[0]), preds.index(ab[1])))
        object.__setattr__(self, "predictors", preds)
        object.__setattr__(self, "interactions", tuple(pairs))

    @property
    def interaction_terms(self):
        return tuple(interaction_name(a, b) for a, b in self.interactions)

    @property
    def terms(self):
        return self.predictors + self.interaction_terms

    @property
    def formula(self) -> str:
        return self.spec().formula

    def spec(self, label="Global") -> ModelSpec:
        return ModelSpec(label, self.response, self.terms)

    def without(self, term: str) -> "GlobalModel":
        """
        Drop a main effect (and every interaction that uses it) or a single
        interaction term.
        """
        parts = term_parts(term)
        if len(parts) == 1:
            (name,) = parts
            if name not in self.predictors:
                raise KeyError(f"{term!r} is not a predictor of the global model {self.terms}")
            preds = tuple(p for p in self.predictors if p != name)
            pairs = tuple(ab for ab in self.interactions if name not in ab)
            return GlobalModel(self.response, preds, pairs)

        if len(parts) != 2:
            raise KeyError(f"{term!r} is not a term of the global model {self.terms}")
        a, b = parts
        key = {a, b}
        if not any(set(ab) == key for ab in self.interactions):
            raise KeyError(f"{term!r} is not an interaction of the global model {self.terms}")
        pairs = tuple(ab for ab in self.interactions if set(ab) != key)
        return GlobalModel(self.response, self.predictors, pairs)

    def without_terms(self, terms) -> "GlobalModel":
        out = self
        for t in terms:
            parts = term_parts(t)
            # a main effect dropped earlier already removed its interactions
            if len(parts) == 2 and not all(p in out.predictors for p in parts):
                continue
            out = out.without(t)
        return out


def full_global(response: str, predictors) -> GlobalModel:
    """Global model with every pairwise interaction among `predictors`."""
    predictors = tuple(predictors)
    return GlobalModel(response, predictors, tuple(combinations(predictors, 2)))


def sub_model_label(terms) -> str:
    return "+".join(terms) if terms else NULL_LABEL


def mechanism_set(global_model: GlobalModel):
    """
    Marginality-constrained power set of the global model.

    Main-effect subsets are enumerated by size; for each, only interactions
    whose two endpoints are both in the subset may be switched on.
    """
    specs = []
    preds = global_model.predictors
    for size in range(len(preds) + 1):
        for mains in combinations(preds, size):
            allowed = [ab for ab in global_model.interactions if ab[0] in mains and ab[1] in mains]
            for n_int in range(len(allowed) + 1):
                for inters in combinations(allowed, n_int):
                    terms = tuple(mains) + tuple(interaction_name(a, b) for a, b in inters)
                    specs.append(ModelSpec(sub_model_label(terms), global_model.response, terms))
    return specs
