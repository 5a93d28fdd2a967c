"""
This defines the base class for all DeployManager types.
"""

# Standard
from typing import List, Optional, Tuple
import abc


class DeployManagerBase(abc.ABC):
    """
    Base class for deploy managers which are the only path by which the
    controllers read and write cluster state. Every operation returns a
    (success, value) tuple where success=False signals an API failure other
    than not-found.
    """

    @abc.abstractmethod
    def get_object_current_state(
        self,
        kind: str,
        name: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, Optional[dict]]:
        """Fetch the current state of a given object by name

        Args:
            kind:  str
                The kind of the object to fetch
            name:  str
                The full name of the object to fetch
            namespace:  str
                The namespace to search for the object
            api_version:  str
                The api_version of the resource kind to fetch

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  dict or None
                The dict representation of the current object's configuration,
                or None if not present
        """

    @abc.abstractmethod
    def filter_objects_current_state(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str] = None,
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, List[dict]]:
        """Fetch the list of objects that match either/both the label or field
        selector

        Args:
            kind:  str
                The kind of the object to fetch
            namespace:  Optional[str]
                The namespace to search for the objects. If None, the search is
                cluster wide.
            api_version:  str
                The api_version of the resource kind to fetch
            label_selector:  str
                The label_selector to filter the resources
            field_selector:  str
                The field_selector to filter the resources

        Returns:
            success:  bool
                Whether or not the state fetch operation succeeded
            current_state:  List[dict]
                A list of dict representations for the objects configuration,
                or an empty list if no objects match
        """

    @abc.abstractmethod
    def create(self, resource: dict) -> Tuple[bool, bool]:
        """Create a single object in the cluster

        Args:
            resource:  dict
                The full manifest of the object to create

        Returns:
            success:  bool
                Whether or not the create call completed without an unexpected
                error
            created:  bool
                True if the object was created, False if an object with the
                same name already exists
        """

    @abc.abstractmethod
    def update(self, resource: dict) -> Tuple[bool, bool]:
        """Replace an existing object. The write is conditional on
        metadata.resourceVersion when it is present.

        Args:
            resource:  dict
                The full manifest of the object to write

        Returns:
            success:  bool
                Whether or not the update succeeded
            changed:  bool
                Whether or not the update resulted in changes
        """

    @abc.abstractmethod
    def delete_all_of(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        namespace: Optional[str],
        api_version: Optional[str] = None,
        label_selector: Optional[str] = None,
        field_selector: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """Delete every object of the given kind that matches the selectors

        Args:
            kind:  str
                The kind of the objects to delete
            namespace:  Optional[str]
                The namespace holding the objects
            api_version:  str
                The api_version of the resource kind to delete
            label_selector:  str
                The label_selector to filter the resources
            field_selector:  str
                The field_selector to filter the resources

        Returns:
            success:  bool
                Whether or not the delete call succeeded
            changed:  bool
                Whether or not any object was deleted
        """

    @abc.abstractmethod
    def set_status(  # pylint: disable=too-many-arguments
        self,
        kind: str,
        name: str,
        namespace: Optional[str],
        status: dict,
        api_version: Optional[str] = None,
    ) -> Tuple[bool, bool]:
        """Set the status sub-resource for an object

        Args:
            kind:  str
                The kind of the object to update
            name:  str
                The full name of the object to update
            namespace:  Optional[str]
                The namespace holding the object
            status:  dict
                The status object to set onto the given object
            api_version:  str
                The api_version of the resource to update

        Returns:
            success:  bool
                Whether or not the status write succeeded
            changed:  bool
                Whether or not the status update resulted in a change
        """
