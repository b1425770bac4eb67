# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the Apache 2.0 License.
import docker
import requests

from ledger_fixtures.errors import PullFailed

from loguru import logger as LOG


def _format_progress(event):
    parts = [event.get("id"), event.get("status"), event.get("progress")]
    return " ".join(str(p) for p in parts if p)


class ImageProvisioner:
    def __init__(self, runtime):
        self.runtime = runtime

    def ensure(self, image_reference):
        """
        Makes sure ``image_reference`` is available to the local daemon,
        pulling it if it is not cached yet.

        :return: the pull progress events (empty if the image was cached), for
            diagnostics only.
        :raises PullFailed: if the image is neither cached nor pullable.
        """
        try:
            if self.runtime.image_exists(image_reference):
                LOG.debug(f"Image {image_reference} already present")
                return []

            LOG.info(f"Pulling image {image_reference}")
            progress = []
            for event in self.runtime.pull_image(image_reference):
                progress.append(event)
                if "error" in event:
                    detail = event.get("errorDetail", {}).get("message")
                    raise PullFailed(
                        f"Pulling {image_reference} failed: {detail or event['error']}",
                        image=image_reference,
                    )
                LOG.trace(_format_progress(event))
        except (docker.errors.DockerException, requests.exceptions.RequestException) as e:
            raise PullFailed(
                f"Pulling {image_reference} failed: {e}", image=image_reference
            ) from e

        LOG.info(f"Pulled image {image_reference} ({len(progress)} progress events)")
        return progress
