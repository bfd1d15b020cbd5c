# SPDX-License-Identifier: LGPL-3.0-or-later
import unittest
from unittest.mock import Mock

from botocore.exceptions import ClientError

from fakes.fake_ec2 import client_error
from pv2hvm.ec2.api import Ec2Api, make_ec2_client
from pv2hvm.ec2.exceptions import Ec2ThrottledError


class TestEc2ApiInvoke(unittest.TestCase):
    def setUp(self):
        self.client = Mock()
        self.sleep = Mock()
        self.api = Ec2Api(self.client, logger=Mock(), sleep=self.sleep)

    def test_three_throttles_then_success(self):
        self.client.describe_volumes.side_effect = [
            client_error("RequestLimitExceeded"),
            client_error("Throttling"),
            client_error("RequestLimitExceeded"),
            {"Volumes": [{"VolumeId": "vol-1", "State": "available"}]},
        ]

        vol = self.api.describe_volume("vol-1")

        self.assertEqual(vol["State"], "available")
        self.assertEqual(self.client.describe_volumes.call_count, 4)
        self.assertEqual(self.sleep.call_count, 3)
        for call in self.sleep.call_args_list:
            self.assertTrue(5 <= call.args[0] <= 15)

    def test_rate_limit_family_is_retried(self):
        self.client.delete_snapshot.side_effect = [client_error("SnapshotCreationPerVolumeRateExceeded"), {}]

        with self.assertRaises(ClientError):
            self.api.delete_snapshot("snap-1")

        self.client.create_volume.side_effect = [client_error("VolumeRateLimitExceeded"), {"VolumeId": "vol-9"}]
        self.assertEqual(self.api.create_volume(Size=8), "vol-9")

    def test_non_throttle_error_is_raised_unmodified(self):
        err = client_error("InvalidVolume.NotFound")
        self.client.delete_volume.side_effect = err

        with self.assertRaises(ClientError) as cm:
            self.api.delete_volume("vol-1")

        self.assertIs(cm.exception, err)
        self.sleep.assert_not_called()

    def test_throttle_cap_raises_throttled_error(self):
        api = Ec2Api(self.client, logger=Mock(), max_throttle_retries=2, sleep=self.sleep)
        self.client.describe_images.side_effect = client_error("RequestLimitExceeded")

        with self.assertRaises(Ec2ThrottledError) as cm:
            api.describe_image("ami-1")

        self.assertEqual(self.client.describe_images.call_count, 3)
        self.assertEqual(cm.exception.context["operation"], "describe_images")


class TestEc2ApiWrappers(unittest.TestCase):
    def setUp(self):
        self.client = Mock()
        self.api = Ec2Api(self.client, logger=Mock(), sleep=Mock())

    def test_describe_instance_unwraps_reservations(self):
        self.client.describe_instances.return_value = {"Reservations": [{"Instances": [{"InstanceId": "i-1"}]}]}

        self.assertEqual(self.api.describe_instance("i-1"), {"InstanceId": "i-1"})

    def test_describe_returns_none_when_empty(self):
        self.client.describe_images.return_value = {"Images": []}

        self.assertIsNone(self.api.describe_image("ami-1"))

    def test_create_image_reboots_by_default(self):
        self.client.create_image.return_value = {"ImageId": "ami-1"}

        image_id = self.api.create_image(instance_id="i-1", name="temp-i-1", description="d")

        self.assertEqual(image_id, "ami-1")
        self.client.create_image.assert_called_once_with(
            InstanceId="i-1", Name="temp-i-1", Description="d", NoReboot=False
        )

    def test_copy_snapshot_params(self):
        self.client.copy_snapshot.return_value = {"SnapshotId": "snap-2"}

        out = self.api.copy_snapshot(source_snapshot_id="snap-1", source_region="us-east-1", description="x")

        self.assertEqual(out, "snap-2")
        self.client.copy_snapshot.assert_called_once_with(
            SourceRegion="us-east-1", SourceSnapshotId="snap-1", Description="x"
        )

    def test_device_names(self):
        self.client.describe_instances.return_value = {
            "Reservations": [{"Instances": [{"BlockDeviceMappings": [{"DeviceName": "/dev/xvda"}]}]}]
        }

        self.assertEqual(self.api.device_names("i-1"), ["/dev/xvda"])

    def test_create_tags(self):
        self.api.create_tags(["vol-1"], {"pv2hvm": "true"})

        self.client.create_tags.assert_called_once_with(
            Resources=["vol-1"], Tags=[{"Key": "pv2hvm", "Value": "true"}]
        )


class TestMakeClient(unittest.TestCase):
    def test_botocore_retries_disabled(self):
        client = make_ec2_client("eu-west-1")

        self.assertEqual(client.meta.region_name, "eu-west-1")
        self.assertEqual(client.meta.config.retries["max_attempts"], 1)


if __name__ == "__main__":
    unittest.main()
