"""Tests for cell ownership policies and serial gather/scatter."""

import numpy as np
import pytest

from vicimage.domain import get_local_domain
from vicimage.errors import ConfigurationError, DomainIntegrityError
from vicimage.location import MISSING
from vicimage.mpi_utils import (
    MPIConfig,
    build_owner_map,
    contiguous_owners,
    gather_cells_to_rank0,
    get_comm,
    round_robin_owners,
    scatter_cells_from_rank0,
    slab_counts_starts,
)


class TestMPIConfig:
    def test_defaults(self):
        cfg = MPIConfig.from_dict({}, {}, world_size=1)
        assert cfg.enabled is False
        assert cfg.partition == "contiguous"
        assert cfg.min_rows_per_rank == 1

    def test_policy_is_normalized(self):
        cfg = MPIConfig.from_dict({}, {"policy": "ROUND_ROBIN"})
        assert cfg.partition == "round_robin"

    def test_unknown_policy(self):
        with pytest.raises(ConfigurationError, match="Unknown partition policy"):
            MPIConfig.from_dict({}, {"policy": "hilbert"})

    def test_forced_serial(self):
        assert get_comm(force_disabled=True) == (None, 0, 1)


class TestOwnerPolicies:
    def test_slab_counts(self):
        counts, starts = slab_counts_starts(8, 3)
        assert counts.tolist() == [3, 3, 2]
        assert starts.tolist() == [0, 3, 6]

    def test_contiguous(self):
        assert contiguous_owners(8, 3).tolist() == [0, 0, 0, 1, 1, 1, 2, 2]

    def test_round_robin(self):
        assert round_robin_owners(8, 3).tolist() == [0, 1, 2, 0, 1, 2, 0, 1]

    def test_rows_keep_whole_rows(self, scenario_domain):
        owners = build_owner_map(scenario_domain, 2, policy="rows")
        assert owners.tolist() == [0, 0, 0, 1, 1, 1, 1, 1]

    def test_single_rank_owns_everything(self, scenario_domain):
        for policy in ("contiguous", "round_robin", "rows"):
            assert build_owner_map(scenario_domain, 1, policy=policy).tolist() == [0] * 8

    def test_explicit_owner_map(self, scenario_domain):
        owners = [1, 1, 0, 0, 1, 1, 0, 0]
        assert build_owner_map(scenario_domain, 2, "owner_map", owner_map=owners).tolist() == owners

    def test_owner_map_required(self, scenario_domain):
        with pytest.raises(ConfigurationError):
            build_owner_map(scenario_domain, 2, "owner_map")

    def test_owner_map_wrong_length(self, scenario_domain):
        with pytest.raises(DomainIntegrityError, match="expected 8"):
            build_owner_map(scenario_domain, 2, "owner_map", owner_map=[0, 1])

    def test_owner_map_rank_out_of_range(self, scenario_domain):
        with pytest.raises(DomainIntegrityError, match="outside"):
            build_owner_map(scenario_domain, 2, "owner_map", owner_map=[0, 1, 2, 0, 1, 0, 1, 0])


class TestSerialGatherScatter:
    def test_gather_full_domain(self, scenario_domain):
        values = np.arange(8.0)
        full = gather_cells_to_rank0(None, scenario_domain, values)
        np.testing.assert_array_equal(full, values)

    def test_gather_subset_leaves_missing(self, scenario_domain):
        local = get_local_domain(scenario_domain, round_robin_owners(8, 2), 0)
        full = gather_cells_to_rank0(None, local, np.array([10.0, 12.0, 14.0, 16.0]))
        assert full.tolist() == [10.0, MISSING, 12.0, MISSING, 14.0, MISSING, 16.0, MISSING]

    def test_gather_keeps_trailing_axes(self, scenario_domain):
        values = np.arange(16, dtype=np.int32).reshape(8, 2)
        full = gather_cells_to_rank0(None, scenario_domain, values)
        assert full.shape == (8, 2)
        assert full.dtype == np.int32

    def test_scatter_to_subset(self, scenario_domain):
        local = get_local_domain(scenario_domain, round_robin_owners(8, 2), 1)
        part = scatter_cells_from_rank0(None, local, np.arange(8.0) * 2)
        assert part.tolist() == [2.0, 6.0, 10.0, 14.0]
