import numpy as np
import pytest

from conftest import FakeDecoder, FakeProvider
from poisson_hdr.services.errors import DecodeError, InsufficientInputError, MetadataError, ShapeError
from poisson_hdr.services.poisson import accumulate_weighted, calculate_poisson_estimate, merge_stack, scale_radiance


def _merge(buffers, exposures, gains=None, **kwargs):
	paths = [f"img{i}" for i in range(len(buffers))]
	decoder = FakeDecoder({p: np.asarray(b, dtype=np.float32) for p, b in zip(paths, buffers)})
	return calculate_poisson_estimate(paths, provider=FakeProvider(exposures, gains), decoder=decoder, **kwargs)


def test_scale_radiance_divides_by_exposure_and_gain():
	out = scale_radiance(np.array([2.0, 4.0, 8.0, 1.0, 1.0, 1.0]), exposure=2.0, gain=2.0)
	np.testing.assert_allclose(out, [0.5, 1.0, 2.0, 0.25, 0.25, 0.25])
	assert out.dtype == np.float32


def test_scale_radiance_applies_channel_coefficients():
	pixels = np.ones((2, 2, 3), dtype=np.float32)
	out = scale_radiance(pixels, exposure=0.5, gain=1.0, coefficients=(1.0, 2.0, 4.0))
	assert out.shape == (2, 2, 3)
	np.testing.assert_allclose(out[..., 0], 2.0)
	np.testing.assert_allclose(out[..., 1], 1.0)
	np.testing.assert_allclose(out[..., 2], 0.5)


@pytest.mark.parametrize("pixels", [np.zeros(4), np.zeros((2, 2, 4)), np.zeros((3, 1))])
def test_scale_radiance_rejects_incomplete_triples(pixels):
	with pytest.raises(ShapeError):
		scale_radiance(pixels, 1.0, 1.0)


def test_two_image_scenario():
	out = _merge([[10, 20, 30], [5, 10, 15]], exposures=[1.0, 3.0])
	np.testing.assert_allclose(out, [5.0, 10.0, 15.0], rtol=1e-6)


def test_single_image_counts_twice():
	pixels = np.array([[[0.2, 0.4, 0.6], [1.0, 0.0, 0.5]]], dtype=np.float32)
	out = _merge([pixels], exposures=[0.25], gains=[2.0])
	np.testing.assert_allclose(out, 2 * pixels / 0.5, rtol=1e-6)


def test_output_shape_matches_input():
	rng = np.random.default_rng(0)
	buffers = [rng.random((5, 7, 3), dtype=np.float32) for _ in range(3)]
	out = _merge(buffers, exposures=[0.01, 0.1, 1.0], gains=[1.0, 2.0, 4.0])
	assert out.shape == (5, 7, 3)
	assert out.dtype == np.float32


def test_scaling_inputs_scales_output():
	rng = np.random.default_rng(1)
	buffers = [rng.random((4, 4, 3), dtype=np.float32) for _ in range(3)]
	exposures = [0.5, 1.0, 2.0]
	base = _merge(buffers, exposures)
	scaled = _merge([b * 3.0 for b in buffers], exposures)
	np.testing.assert_allclose(scaled, base * 3.0, rtol=1e-5)


def test_longer_exposure_weighs_more():
	radiances = [np.zeros(3, dtype=np.float32), np.ones(3, dtype=np.float32)]
	contributions = [accumulate_weighted(radiances, [1.0, e])[0] for e in (0.5, 1.0, 2.0, 8.0)]
	assert all(a < b for a, b in zip(contributions, contributions[1:]))
	np.testing.assert_allclose(contributions[-1], 8.0 / 9.0, rtol=1e-6)


def test_accumulate_is_ordered():
	a = np.array([1.0, 1.0, 1.0], dtype=np.float32)
	b = np.array([3.0, 3.0, 3.0], dtype=np.float32)
	forward = accumulate_weighted([a, b], [1.0, 3.0])
	backward = accumulate_weighted([b, a], [1.0, 3.0])
	np.testing.assert_allclose(forward, 2.625, rtol=1e-6)
	np.testing.assert_allclose(backward, 1.875, rtol=1e-6)


def test_accumulate_propagates_nan():
	out = accumulate_weighted([np.array([np.nan, 1.0, 2.0], dtype=np.float32)], [1.0])
	assert np.isnan(out[0])
	np.testing.assert_allclose(out[1:], [2.0, 4.0])


def test_accumulate_requires_input():
	with pytest.raises(InsufficientInputError):
		accumulate_weighted([], [])


def test_accumulate_rejects_mismatched_shapes():
	with pytest.raises(ShapeError):
		accumulate_weighted([np.zeros(3), np.zeros(6)], [1.0, 1.0])


def test_accumulate_rejects_exposure_count_mismatch():
	with pytest.raises(ShapeError):
		accumulate_weighted([np.zeros(3)], [1.0, 2.0])


def test_empty_image_set():
	with pytest.raises(InsufficientInputError):
		calculate_poisson_estimate([], provider=FakeProvider([]), decoder=FakeDecoder({}))


def test_mismatched_image_sizes():
	with pytest.raises(ShapeError):
		_merge([np.zeros((2, 2, 3)), np.zeros((2, 3, 3))], exposures=[1.0, 1.0])


@pytest.mark.parametrize("exposures, gains", [
	([1.0], None),
	([1.0, 0.0], None),
	([1.0, -2.0], None),
	([1.0, float("nan")], None),
	([1.0, 1.0], [1.0, 0.0]),
	([1.0, 1.0], [1.0]),
	([None, 1.0], None),
	(["x", 1.0], None),
	([1.0, 1.0], [1.0, "fast"]),
])
def test_bad_metadata(exposures, gains):
	with pytest.raises(MetadataError):
		_merge([np.ones(3), np.ones(3)], exposures, gains)


def test_decode_error_aborts_merge():
	def decoder(path):
		raise DecodeError(f"{path}: unsupported color mode 'RGBA'")

	with pytest.raises(DecodeError):
		calculate_poisson_estimate(["a", "b"], provider=FakeProvider([1.0, 2.0]), decoder=decoder)


def test_merge_stack_success():
	result = merge_stack(["a"], provider=FakeProvider([1.0]), decoder=FakeDecoder({"a": np.ones(3)}))
	assert result.ok
	np.testing.assert_allclose(result.radiance, [2.0, 2.0, 2.0])


def _failing_decoder(exc):
	def decoder(path):
		raise exc

	return decoder


@pytest.mark.parametrize("paths, provider, decoder, kind", [
	([], FakeProvider([]), FakeDecoder({}), "insufficient_input"),
	(["a"], FakeProvider([0.0]), FakeDecoder({"a": np.ones(3)}), "metadata"),
	(["a"], FakeProvider([1.0]), _failing_decoder(DecodeError("grayscale")), "decode"),
	(["a"], FakeProvider([1.0]), FakeDecoder({"a": np.ones(4)}), "shape"),
	(["a"], FakeProvider([1.0]), _failing_decoder(RuntimeError("boom")), "unknown"),
])
def test_merge_stack_tags_errors(paths, provider, decoder, kind):
	result = merge_stack(paths, provider=provider, decoder=decoder)
	assert not result.ok
	assert result.radiance is None
	assert result.error_kind == kind
	assert result.message


class _ScalarProvider:
	def get_exposures(self, paths):
		return 5

	def get_gains(self, paths):
		return [1.0] * len(paths)


@pytest.mark.parametrize("provider", [FakeProvider([None]), FakeProvider(["fast"]), FakeProvider([1.0], [None]), _ScalarProvider()])
def test_malformed_metadata_is_tagged_metadata(provider):
	result = merge_stack(["a"], provider=provider, decoder=FakeDecoder({"a": np.ones(3)}))
	assert result.error_kind == "metadata"


def test_merge_reports_vectors_and_queries_provider_once():
	provider = FakeProvider([0.5, 2.0], [1.0, 4.0])
	decoder = FakeDecoder({"a": np.ones(3), "b": np.ones(3)})
	result = merge_stack(["a", "b"], provider=provider, decoder=decoder)
	assert result.ok
	assert result.exposures == [0.5, 2.0]
	assert result.gains == [1.0, 4.0]
	assert sorted(name for name, _ in provider.calls) == ["exposures", "gains"]
