"""
CLI commands for traffic redirection.

Provides commands for registering network elements and inspection
ports, and for installing and tuning inspection hooks on the configured
controller backend.

Copyright (c) 2025 DNS Science.io, an After Dark Systems, LLC company.
All rights reserved.
"""

import json
import sys
from contextlib import contextmanager
from functools import wraps
from typing import Generator

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from sdnredirect.config import RedirectConfig
from sdnredirect.redirection.backends import get_backend
from sdnredirect.redirection.controller import RedirectionController
from sdnredirect.redirection.exceptions import RedirectionError
from sdnredirect.redirection.models import (
    FailurePolicyType,
    InspectionHookElement,
    InspectionPortElement,
    NetworkElement,
    TagEncapsulationType,
)

console = Console()


@contextmanager
def open_controller(ctx: click.Context) -> Generator[RedirectionController, None, None]:
    """Open a controller on the backend chosen by the top-level options."""
    obj = ctx.find_root().obj or {}
    config = obj.get("config") or RedirectConfig()
    backend = get_backend(obj.get("backend_url"), config)
    with RedirectionController(backend, reconcile=True) as controller:
        try:
            yield controller
        except RedirectionError:
            failure = controller.last_failure
            if failure is not None:
                console.print(f"[dim]Failed operation: {failure.operation}[/dim]")
            raise


def handle_errors(func):
    """Render redirection errors and exit non-zero."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except RedirectionError as e:
            console.print(f"[red]{type(e).__name__}: {escape(str(e))}[/red]")
            sys.exit(1)
        except ValueError as e:
            console.print(f"[red]Invalid input: {escape(str(e))}[/red]")
            sys.exit(2)

    return wrapper


def inspection_port_options(func):
    """Add --ingress/--egress options identifying an inspection port."""
    func = click.option(
        "--egress",
        help="Egress port id (defaults to the ingress port)",
    )(func)
    func = click.option(
        "--ingress",
        required=True,
        help="Ingress port id of the inspection device",
    )(func)
    return func


def make_port(ingress: str, egress: str | None) -> InspectionPortElement:
    return InspectionPortElement(
        ingress_port=NetworkElement(element_id=ingress),
        egress_port=NetworkElement(element_id=egress or ingress),
    )


def print_json(data) -> None:
    click.echo(json.dumps(data, indent=2))


def print_hooks(hooks: list[InspectionHookElement], title: str) -> None:
    table = Table(title=title)
    table.add_column("Order", justify="right", style="cyan")
    table.add_column("Hook ID", style="green")
    table.add_column("Inspected")
    table.add_column("Inspection Port")
    table.add_column("Tag", justify="right")
    table.add_column("Encap")
    table.add_column("Failure Policy")

    for hook in hooks:
        policy_style = "red" if hook.failure_policy == FailurePolicyType.FAIL_CLOSE else "yellow"
        table.add_row(
            str(hook.order),
            hook.hook_id or "",
            ", ".join(sorted(hook.inspected_ids)),
            hook.inspection_port.element_id or "/".join(hook.inspection_port.pair_key),
            str(hook.tag),
            hook.encapsulation_type.value,
            f"[{policy_style}]{hook.failure_policy.value}[/{policy_style}]",
        )

    console.print(table)


def print_hook(hook: InspectionHookElement) -> None:
    ingress_id, egress_id = hook.inspection_port.pair_key
    text = f"""Hook ID: {hook.hook_id}
Inspected: {', '.join(sorted(hook.inspected_ids))}
Inspection Port: {hook.inspection_port.element_id} (ingress={ingress_id}, egress={egress_id})
Tag: {hook.tag}
Encapsulation: {hook.encapsulation_type.value}
Order: {hook.order}
Failure Policy: {hook.failure_policy.value}"""
    console.print(Panel(text, title="Inspection Hook"))


# =============================================================================
# Main redirect command group
# =============================================================================

@click.group()
def redirect():
    """Traffic redirection through inspection devices.

    Register network elements and inspection ports, then install
    inspection hooks steering protected traffic through them.
    """
    pass


# =============================================================================
# Network element commands
# =============================================================================

@redirect.group()
def element():
    """Network element commands."""
    pass


@element.command("provision")
@click.argument("port_id")
@click.option("--mac", "macs", multiple=True, help="MAC address (repeatable)")
@click.option("--ip", "ips", multiple=True, help="IP address (repeatable)")
@click.pass_context
@handle_errors
def element_provision(ctx, port_id, macs, ips):
    """Provision a leaf port on a lab controller (memory/sqlite backends)."""
    port = NetworkElement(element_id=port_id, mac_addresses=list(macs), port_ips=list(ips))
    with open_controller(ctx) as controller:
        controller.backend.provision_port(port)
    console.print(f"[green]Provisioned port {port.element_id}[/green]")


@element.command("register")
@click.argument("children", nargs=-1, required=True)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def element_register(ctx, children, as_json):
    """Register a composite element over CHILDREN (order is significant).

    Examples:

        sdnredirect redirect element register ppg-1 ppg-2
    """
    with open_controller(ctx) as controller:
        composite = controller.register_network_element(
            [NetworkElement(element_id=c) for c in children]
        )
    if as_json:
        print_json(composite.to_dict())
        return
    console.print(f"[green]Registered element {composite.element_id}[/green]")
    console.print(f"Children: {' -> '.join(composite.children)}")


@element.command("update")
@click.argument("element_id")
@click.argument("children", nargs=-1, required=True)
@click.pass_context
@handle_errors
def element_update(ctx, element_id, children):
    """Replace the children of ELEMENT_ID."""
    with open_controller(ctx) as controller:
        updated = controller.update_network_element(
            NetworkElement(element_id=element_id),
            [NetworkElement(element_id=c) for c in children],
        )
    console.print(f"[green]Updated element {updated.element_id}[/green]")
    console.print(f"Children: {' -> '.join(updated.children)}")


@element.command("delete")
@click.argument("element_id")
@click.pass_context
@handle_errors
def element_delete(ctx, element_id):
    """Delete ELEMENT_ID and every hook inspecting it."""
    with open_controller(ctx) as controller:
        controller.delete_network_element(NetworkElement(element_id=element_id))
    console.print(f"[green]Deleted element {element_id}[/green]")


@element.command("list")
@click.argument("element_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def element_list(ctx, element_id, as_json):
    """List the children of ELEMENT_ID."""
    with open_controller(ctx) as controller:
        children = controller.get_network_elements(NetworkElement(element_id=element_id))

    if children is None:
        if as_json:
            print_json(None)
        else:
            console.print(f"[yellow]Element {element_id} not found[/yellow]")
        sys.exit(3)

    if as_json:
        print_json([c.to_dict() for c in children])
        return

    table = Table(title=f"Children of {element_id}")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Element ID", style="green")
    for index, child in enumerate(children, start=1):
        table.add_row(str(index), child.element_id)
    console.print(table)


# =============================================================================
# Inspection port commands
# =============================================================================

@redirect.group()
def port():
    """Inspection port commands."""
    pass


@port.command("register")
@inspection_port_options
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def port_register(ctx, ingress, egress, as_json):
    """Register an inspection port. Repeating it returns the same port."""
    with open_controller(ctx) as controller:
        registered = controller.register_inspection_port(make_port(ingress, egress))
    if as_json:
        print_json(registered.to_dict())
        return
    console.print(f"[green]Inspection port {registered.element_id}[/green]")


@port.command("remove")
@inspection_port_options
@click.pass_context
@handle_errors
def port_remove(ctx, ingress, egress):
    """Remove an inspection port and the hooks bound to it."""
    with open_controller(ctx) as controller:
        controller.remove_inspection_port(make_port(ingress, egress))
    console.print(f"[green]Removed inspection port {ingress}/{egress or ingress}[/green]")


@port.command("get")
@inspection_port_options
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def port_get(ctx, ingress, egress, as_json):
    """Show an inspection port."""
    with open_controller(ctx) as controller:
        found = controller.get_inspection_port(make_port(ingress, egress))

    if as_json:
        print_json(found.to_dict() if found else None)
    elif found is None:
        console.print("[yellow]Inspection port not registered[/yellow]")
    else:
        console.print(Panel(
            f"Port ID: {found.element_id}\n"
            f"Group: {found.parent_id or 'N/A'}\n"
            f"Ingress: {found.ingress_port.element_id}\n"
            f"Egress: {found.egress_port.element_id}",
            title="Inspection Port",
        ))
    if found is None:
        sys.exit(3)


# =============================================================================
# Inspection hook commands
# =============================================================================

@redirect.group()
def hook():
    """Inspection hook commands."""
    pass


@hook.command("install")
@click.option("-e", "--element", "elements", multiple=True, required=True,
              help="Inspected element id (repeatable)")
@inspection_port_options
@click.option("--tag", type=click.IntRange(min=0), required=True, help="Policy tag")
@click.option("--encapsulation", type=click.Choice([t.value for t in TagEncapsulationType]),
              default=TagEncapsulationType.VLAN.value, show_default=True,
              help="Tag encapsulation")
@click.option("--order", type=click.IntRange(min=0), default=0, show_default=True,
              help="Position among hooks on the same elements (lower first)")
@click.option("--failure-policy", type=click.Choice([p.value for p in FailurePolicyType]),
              default=FailurePolicyType.NA.value, show_default=True,
              help="Behavior when the inspection device is down")
@click.option("--register-port", is_flag=True,
              help="Register the inspection port first (rolled back on failure)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def hook_install(ctx, elements, ingress, egress, tag, encapsulation, order, failure_policy,
                 register_port, as_json):
    """Install an inspection hook.

    Examples:

        sdnredirect redirect hook install -e c1 --ingress p3 --tag 42 --encapsulation vxlan

        sdnredirect redirect hook install -e vm-1 -e vm-2 --ingress fw-in --egress fw-out --register-port
    """
    inspected = [NetworkElement(element_id=e) for e in elements]
    encapsulation_type = TagEncapsulationType(encapsulation)
    policy = FailurePolicyType(failure_policy)

    with open_controller(ctx) as controller:
        if register_port:
            hook_id = controller.install_redirection(
                inspected,
                NetworkElement(element_id=ingress),
                NetworkElement(element_id=egress or ingress),
                tag, encapsulation_type, order, policy,
            )
        else:
            hook_id = controller.install_inspection_hook(
                inspected, make_port(ingress, egress), tag, encapsulation_type, order, policy,
            )

    if as_json:
        print_json({"hook_id": hook_id})
        return
    console.print(f"[green]Installed inspection hook {hook_id}[/green]")


@hook.command("remove")
@click.argument("hook_id", required=False)
@click.option("-e", "--element", "elements", multiple=True, help="Inspected element id")
@click.option("--ingress", help="Ingress port id of the inspection device")
@click.option("--egress", help="Egress port id (defaults to the ingress port)")
@click.pass_context
@handle_errors
def hook_remove(ctx, hook_id, elements, ingress, egress):
    """Remove a hook by HOOK_ID, or by inspected elements and port."""
    if not hook_id and not (elements and ingress):
        raise click.UsageError("give HOOK_ID, or --element and --ingress")
    with open_controller(ctx) as controller:
        if hook_id:
            controller.remove_inspection_hook_by_id(hook_id)
        else:
            controller.remove_inspection_hook(
                [NetworkElement(element_id=e) for e in elements], make_port(ingress, egress)
            )
    console.print("[green]Inspection hook removed[/green]")


@hook.command("remove-all")
@click.argument("element_id")
@click.pass_context
@handle_errors
def hook_remove_all(ctx, element_id):
    """Remove every hook inspecting ELEMENT_ID."""
    with open_controller(ctx) as controller:
        controller.remove_all_inspection_hooks(NetworkElement(element_id=element_id))
    console.print(f"[green]Removed inspection hooks for {element_id}[/green]")


@hook.command("get")
@click.argument("hook_id", required=False)
@click.option("-e", "--element", help="Inspected element id")
@click.option("--ingress", help="Ingress port id of the inspection device")
@click.option("--egress", help="Egress port id (defaults to the ingress port)")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def hook_get(ctx, hook_id, element, ingress, egress, as_json):
    """Show a hook by HOOK_ID, or by inspected element and port."""
    if not hook_id and not (element and ingress):
        raise click.UsageError("give HOOK_ID, or --element and --ingress")
    with open_controller(ctx) as controller:
        if hook_id:
            found = controller.get_inspection_hook(hook_id)
        else:
            found = controller.get_inspection_hook_for(
                NetworkElement(element_id=element), make_port(ingress, egress)
            )

    if as_json:
        print_json(found.to_dict() if found else None)
    elif found is None:
        console.print("[yellow]Inspection hook not found[/yellow]")
    else:
        print_hook(found)
    if found is None:
        sys.exit(3)


@hook.command("list")
@click.argument("element_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
@handle_errors
def hook_list(ctx, element_id, as_json):
    """List hooks inspecting ELEMENT_ID in evaluation order."""
    with open_controller(ctx) as controller:
        hooks = controller.list_inspection_hooks(NetworkElement(element_id=element_id))
    if as_json:
        print_json([h.to_dict() for h in hooks])
        return
    print_hooks(hooks, f"Inspection Hooks - {element_id}")
    console.print(f"\nTotal hooks: {len(hooks)}")


@hook.command("set-tag")
@click.argument("element_id")
@inspection_port_options
@click.argument("tag", type=click.IntRange(min=0))
@click.pass_context
@handle_errors
def hook_set_tag(ctx, element_id, ingress, egress, tag):
    """Set the tag of the hook inspecting ELEMENT_ID through the port."""
    with open_controller(ctx) as controller:
        controller.set_inspection_hook_tag(
            NetworkElement(element_id=element_id), make_port(ingress, egress), tag
        )
    console.print(f"[green]Tag set to {tag}[/green]")


@hook.command("set-order")
@click.argument("element_id")
@inspection_port_options
@click.argument("order", type=click.IntRange(min=0))
@click.pass_context
@handle_errors
def hook_set_order(ctx, element_id, ingress, egress, order):
    """Set the order of the hook inspecting ELEMENT_ID through the port."""
    with open_controller(ctx) as controller:
        controller.set_inspection_hook_order(
            NetworkElement(element_id=element_id), make_port(ingress, egress), order
        )
    console.print(f"[green]Order set to {order}[/green]")


@hook.command("set-failure-policy")
@click.argument("element_id")
@inspection_port_options
@click.argument("policy", type=click.Choice([p.value for p in FailurePolicyType]))
@click.pass_context
@handle_errors
def hook_set_failure_policy(ctx, element_id, ingress, egress, policy):
    """Set the failure policy of the hook inspecting ELEMENT_ID through the port."""
    with open_controller(ctx) as controller:
        controller.set_inspection_hook_failure_policy(
            NetworkElement(element_id=element_id), make_port(ingress, egress),
            FailurePolicyType(policy),
        )
    console.print(f"[green]Failure policy set to {policy}[/green]")
