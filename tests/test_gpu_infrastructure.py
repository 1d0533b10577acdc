import os
import unittest
from unittest.mock import MagicMock

import numpy as np

import histeq
from histeq.domain.errors import DeviceError
from histeq.domain.interfaces import KernelParams
from histeq.domain.models import STAGE_ORDER, Stage
from histeq.features.equalization.logic import equalize_reference
from histeq.infrastructure.gpu.queue import MAX_WORKGROUPS_PER_DIM, dispatch_grid
from histeq.kernel.system.paths import get_shader_path


def _try_gpu():
    from histeq.infrastructure.gpu.device import GPUDevice

    try:
        return GPUDevice.select()
    except DeviceError:
        return None


class TestDispatchGrid(unittest.TestCase):
    def test_small_domain(self):
        self.assertEqual(dispatch_grid(1), (1, 1))
        self.assertEqual(dispatch_grid(256), (1, 1))
        self.assertEqual(dispatch_grid(257), (2, 1))

    def test_large_domain_folds(self):
        x, y = dispatch_grid(MAX_WORKGROUPS_PER_DIM * 256 + 1)
        self.assertEqual(x, MAX_WORKGROUPS_PER_DIM)
        self.assertEqual(y, 2)
        self.assertGreaterEqual(x * y * 256, MAX_WORKGROUPS_PER_DIM * 256 + 1)


class TestWaitIdle(unittest.TestCase):
    def _device(self):
        from histeq.infrastructure.gpu.device import GPUDevice

        gpu = GPUDevice.__new__(GPUDevice)
        gpu.device = MagicMock()
        gpu.device.queue.on_submitted_work_done_sync.side_effect = TypeError("ctype mismatch")
        return gpu

    def test_blocks_by_polling_the_device(self):
        gpu = self._device()
        gpu.wait_idle()
        gpu.device.poll.assert_called_once()
        gpu.device.queue.on_submitted_work_done_sync.assert_not_called()


class TestShaderFiles(unittest.TestCase):
    def test_shaders_resolve_inside_package(self):
        package_dir = os.path.dirname(os.path.abspath(histeq.__file__))
        path = get_shader_path("histogram")
        self.assertTrue(path.startswith(package_dir), path)

    def test_one_shader_per_entry_point(self):
        for stage in STAGE_ORDER:
            path = get_shader_path(stage.value)
            self.assertTrue(os.path.exists(path), path)
            with open(path, "r", encoding="utf-8") as f:
                self.assertIn(f"fn {stage.value}(", f.read())


class TestGPUPipeline(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.gpu = _try_gpu()

    @classmethod
    def tearDownClass(cls):
        if cls.gpu is not None:
            cls.gpu.destroy()

    def setUp(self):
        if self.gpu is None:
            self.skipTest("GPU not available")

    def _pipeline(self):
        from histeq.infrastructure.gpu.program import WgpuProgram
        from histeq.infrastructure.gpu.queue import WgpuCommandQueue
        from histeq.services.equalization import EqualizationPipeline

        return EqualizationPipeline(WgpuCommandQueue(self.gpu), WgpuProgram.build(self.gpu))

    def test_scenario_a(self):
        result = self._pipeline().run(np.array([[10, 10], [200, 200]], dtype=np.uint8))
        self.assertEqual(result.output.pixels.tolist(), [[128, 128], [255, 255]])
        self.assertEqual(len(result.profile), 4)

    def test_matches_reference_on_odd_sizes(self):
        rng = np.random.default_rng(7)
        pipeline = self._pipeline()
        for shape in [(1, 1), (3, 7), (255, 257)]:
            img = rng.integers(0, 256, size=shape, dtype=np.uint8)
            result = pipeline.run(img)
            self.assertTrue(np.array_equal(result.output.pixels, equalize_reference(img)))
            self.assertEqual(int(result.cumulative[-1]), img.size)

    def test_large_image_folds_dispatch_grid(self):
        img = np.random.default_rng(11).integers(0, 256, size=(4099, 4101), dtype=np.uint8)
        self.assertGreater(dispatch_grid(img.size)[1], 1)
        result = self._pipeline().run(img)
        self.assertTrue(np.array_equal(result.output.pixels, equalize_reference(img)))

    def test_single_bin_contention(self):
        img = np.full((512, 512), 3, dtype=np.uint8)
        result = self._pipeline().run(img)
        self.assertEqual(int(result.histogram[3]), img.size)
        self.assertTrue(np.all(result.output.pixels == 255))

    def test_identity_lut_reproduces_input(self):
        from histeq.infrastructure.gpu.program import WgpuProgram
        from histeq.infrastructure.gpu.queue import WgpuCommandQueue

        queue = WgpuCommandQueue(self.gpu)
        kernel = WgpuProgram.build(self.gpu).kernel(Stage.PIXEL_REPROJECTOR)
        img = np.random.default_rng(3).integers(0, 256, size=19 * 23, dtype=np.uint8)
        params = KernelParams(pixel_count=img.size, total_pixels=img.size, max_output=255)
        with queue.create_buffer(img.size, "input") as src, queue.create_buffer(
            1024, "lut"
        ) as lut, queue.create_buffer(img.size, "output") as dst:
            queue.write_buffer(src, img)
            queue.write_buffer(lut, np.arange(256, dtype=np.uint32))
            queue.wait(queue.enqueue_kernel(kernel, [src, lut, dst], params))
            self.assertTrue(np.array_equal(queue.read_buffer(dst, img.size), img))

    def test_buffer_round_trip(self):
        from histeq.infrastructure.gpu.queue import WgpuCommandQueue

        queue = WgpuCommandQueue(self.gpu)
        with queue.create_buffer(7, "probe") as buf:
            self.assertEqual(buf.size, 8)
            queue.write_buffer(buf, np.arange(7, dtype=np.uint8))
            self.assertEqual(queue.read_buffer(buf, 7).tolist(), list(range(7)))
            queue.fill_buffer(buf, 0)
            self.assertFalse(queue.read_buffer(buf, 7).any())
        self.assertIsNone(buf.buffer)

    def test_compile_error_carries_build_log(self):
        import tempfile

        from histeq.infrastructure.gpu.shader_loader import ShaderLoader

        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "broken.wgsl")
            with open(path, "w", encoding="utf-8") as f:
                f.write("@compute @workgroup_size(1) fn main() { let x: u32 = ; }")
            with self.assertRaises(DeviceError) as ctx:
                ShaderLoader(self.gpu).load(path)
        self.assertEqual(ctx.exception.operation, "build")
        self.assertTrue(ctx.exception.build_log)

    def test_program_resolves_every_stage(self):
        from histeq.infrastructure.gpu.program import WgpuProgram

        program = WgpuProgram.build(self.gpu)
        for stage in Stage:
            self.assertEqual(program.kernel(stage).stage, stage)


if __name__ == "__main__":
    unittest.main()
