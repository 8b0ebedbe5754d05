from typing import Any, Dict, Iterable, List, Mapping, Tuple, Union

from podsearch.models import FacetHit, SearchFacet

MAX_FACET_HITS = 9

FacetRow = Tuple[str, str, int]
FacetDistribution = Mapping[str, Mapping[str, int]]


def aggregate_facet_distribution(distribution: FacetDistribution) -> List[SearchFacet]:
    """
    {facet: {value: count}} -> one SearchFacet per facet, top 9 values by
    count. sorted() is stable, so equal counts keep their input order.
    """
    facets: List[SearchFacet] = []
    for facet_name, values in distribution.items():
        ranked = sorted(values.items(), key=lambda kv: kv[1], reverse=True)
        hits = [FacetHit(ep=str(value), hits=int(count)) for value, count in ranked[:MAX_FACET_HITS]]
        facets.append(SearchFacet(facet_name=facet_name, facet_hits=hits))
    return facets


def distribution_from_rows(rows: Iterable[Any]) -> Dict[str, Dict[str, int]]:
    """
    Group (facet_type, facet_value, count) rows by type. Rows may be tuples
    or dicts with facet_type/facet_value/count keys (the RPC row shape).
    A repeated (type, value) keeps its first position and the last count.
    """
    grouped: Dict[str, Dict[str, int]] = {}
    for row in rows:
        if isinstance(row, Mapping):
            facet_type, value, count = row["facet_type"], row["facet_value"], row["count"]
        else:
            facet_type, value, count = row
        grouped.setdefault(str(facet_type), {})[str(value)] = int(count)
    return grouped


def aggregate_facet_rows(rows: Iterable[Any]) -> List[SearchFacet]:
    return aggregate_facet_distribution(distribution_from_rows(rows))


def aggregate_facets(raw: Union[FacetDistribution, Iterable[Any], None]) -> List[SearchFacet]:
    if not raw:
        return []
    if isinstance(raw, Mapping):
        return aggregate_facet_distribution(raw)
    return aggregate_facet_rows(raw)


def facets_to_rows(facets: Iterable[SearchFacet]) -> List[FacetRow]:
    return [(f.facet_name, hit.ep, hit.hits) for f in facets for hit in f.facet_hits]
