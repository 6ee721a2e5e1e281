# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Command Line Interface for cage.
"""
import functools
import logging
import os
import sys

import click

from .. import __version__
from ..CONVERTERS.project_template import ProjectGenerator
from ..MANAGERS.project_manager import ProjectManager
from ..MODELS.lifecycle import LifecycleResult, TaskState, ProcessOptions, LogsOptions
from ..MODELS.project_context import (
    ProjectContext, find_project_root, DEFAULT_TARGET, DEFAULT_MAX_PARALLEL,
)
from ..RUNNERS.container_runtime import DockerComposeRuntime
from ..RUNNERS.version_control import GitClient
from ..errors import CageError, ConfigNotFound, LifecycleFailed, OperationCancelled

EXAMPLES = """
\b
From inside a project directory:
    cage pull                      # Download images for the project
    cage up db                     # Start just the database pod running
    cage run migrate               # Run the task in 'pods/migrate.yml'
    cage up                        # Start the whole application running
    cage status                    # Get an overview of the project
    cage source mount rails_hello  # Clone source and configure mounts
"""

PROCESS_SETTINGS = {"ignore_unknown_options": True, "allow_interspersed_args": False}


def _configure_logging(verbose: bool):
    level_name = "DEBUG" if verbose else os.environ.get("CAGE_LOG", "WARNING").upper()
    level = getattr(logging, level_name, logging.WARNING)
    logging.basicConfig(format="%(levelname)s %(name)s: %(message)s")
    logging.getLogger("cage").setLevel(level)


def _handle_errors(f):
    """
    Reports cage errors as `Error: ...` and a non-zero exit status.
    """
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except LifecycleFailed as e:
            _echo_result(e.result)
            raise click.ClickException(str(e))
        except OperationCancelled as e:
            if e.result is not None:
                _echo_result(e.result)
            click.echo(f"Error: {e}", err=True)
            sys.exit(130)
        except CageError as e:
            raise click.ClickException(str(e))
    return wrapper


def _project(ctx, output: bool = True) -> ProjectManager:
    """
    Loads the project for this invocation, writing `.cage/pods` if the
    runtime will need it.
    """
    obj = ctx.find_root().obj
    if 'project' not in obj:
        root_dir = obj.get('root_dir') or find_project_root()
        if root_dir is None:
            raise ConfigNotFound(os.getcwd())
        target = obj.get('target')
        if not target:
            target = "test" if obj.get('command') == "test" else DEFAULT_TARGET
        context = ProjectContext(
            root_dir=root_dir,
            name=obj.get('project_name'),
            target=target,
            default_tags_path=obj.get('default_tags'),
            max_parallel=obj.get('max_parallel') or DEFAULT_MAX_PARALLEL,
            fail_fast=obj.get('fail_fast', False),
        )
        project = ProjectManager(context, runtime=obj.get('runtime'), git=obj.get('git'))
        project.load()
        obj['project'] = project
    project = obj['project']
    if output:
        project.output()
    return project


def _echo_result(result: LifecycleResult):
    for key, task in result.tasks.items():
        line = f"{key:30} {task.state.value}"
        if task.error and task.state != TaskState.SUCCEEDED:
            line += f" ({task.error})"
        click.echo(line)


def _process_options(detached, user, no_tty, entrypoint=None, environment=(), privileged=False):
    env = {}
    for binding in environment:
        if '=' not in binding:
            raise click.BadParameter(f"'{binding}' is not KEY=VAL", param_hint="'-e'")
        key, value = binding.split('=', 1)
        env[key] = value
    return ProcessOptions(detached=detached, user=user, allocate_tty=not no_tty,
                          entrypoint=entrypoint, environment=env, privileged=privileged)


@click.group(epilog=EXAMPLES)
@click.option('--project-name', '-p', help='The name of this project. Defaults to the current directory name.')
@click.option('--target', help='Override settings with values from the specified subdirectory of pods/targets. '
                               'Defaults to development, or test for the test command.')
@click.option('--default-tags', type=click.Path(exists=True, dir_okay=False),
              help='A list of tagged image names, one per line, to be used as defaults for images.')
@click.option('--max-parallel', type=click.IntRange(min=1), default=DEFAULT_MAX_PARALLEL,
              envvar='CAGE_MAX_PARALLEL', show_default=True,
              help='Maximum runtime operations in flight at once.')
@click.option('--fail-fast', is_flag=True, help='Stop starting new units after the first failure.')
@click.option('--verbose', '-v', is_flag=True, help='Log debugging output.')
@click.version_option(__version__, prog_name="cage")
@click.pass_context
def cli(ctx, project_name, target, default_tags, max_parallel, fail_fast, verbose):
    """
    Cage - Develop complex projects with lots of Docker services.
    """
    ctx.ensure_object(dict)
    _configure_logging(verbose)
    ctx.obj.update(
        command=ctx.invoked_subcommand,
        project_name=project_name,
        target=target,
        default_tags=default_tags,
        max_parallel=max_parallel,
        fail_fast=fail_fast,
    )


@cli.command()
@click.argument('name')
@_handle_errors
def new(name):
    """Create a directory containing a new project"""
    root = ProjectGenerator(name).generate(os.getcwd())
    click.echo(f"Created project in {root}")


@cli.command(hidden=True)
@click.pass_context
def sysinfo(ctx):
    """Print information about the system"""
    click.echo(f"cage {__version__}")
    runtime = DockerComposeRuntime("cage", ".")
    for line in runtime.version():
        click.echo(line)
    click.echo((ctx.obj.get('git') or GitClient()).version())


@cli.command()
@click.argument('pods_or_services', nargs=-1)
@click.pass_context
@_handle_errors
def status(ctx, pods_or_services):
    """Print out the status of the current project"""
    project = _project(ctx)
    click.echo(f"Project {project.name} (target {project.context.target})")
    click.echo(f"{'SERVICE':30} {'STATUS':10} SOURCES")
    click.echo("-" * 50)
    for svc, state, aliases in project.status(pods_or_services):
        click.echo(f"{svc.qualified_name:30} {state.value:10} {', '.join(aliases)}")


def _lifecycle_command(name, help_text):
    @click.argument('pods_or_services', nargs=-1)
    @click.pass_context
    @_handle_errors
    def command(ctx, pods_or_services):
        project = _project(ctx)
        result = getattr(project, name)(pods_or_services)
        _echo_result(result)
    command.__doc__ = help_text
    return cli.command(name=name)(command)


build = _lifecycle_command('build', "Build images for the containers associated with this project")
pull = _lifecycle_command('pull', "Pull images for the containers associated with this project")
up = _lifecycle_command('up', "Run project")
stop = _lifecycle_command('stop', "Stop all containers associated with project")
rm = _lifecycle_command('rm', "Remove the containers associated with a pod or service")


@cli.command(context_settings=PROCESS_SETTINGS)
@click.option('--detached', '-d', is_flag=True, help='Run command detached in background')
@click.option('--user', help='User as which to run a command')
@click.option('-T', 'no_tty', is_flag=True, help='Do not allocate a TTY when running a command')
@click.option('--entrypoint', help='Override the entrypoint of the service')
@click.option('-e', 'environment', multiple=True, metavar='KEY=VAL',
              help='Set an environment variable in the container')
@click.argument('pod')
@click.argument('command', nargs=-1, type=click.UNPROCESSED)
@click.pass_context
@_handle_errors
def run(ctx, detached, user, no_tty, entrypoint, environment, pod, command):
    """Run a specific pod as a one-shot task"""
    options = _process_options(detached, user, no_tty, entrypoint, environment)
    code = _project(ctx).run(pod, list(command) or None, options)
    ctx.exit(code)


@cli.command(name='exec', context_settings=PROCESS_SETTINGS)
@click.option('--detached', '-d', is_flag=True, help='Run command detached in background')
@click.option('--user', help='User as which to run a command')
@click.option('-T', 'no_tty', is_flag=True, help='Do not allocate a TTY when running a command')
@click.option('--privileged', is_flag=True, help='Run a command with elevated privileges')
@click.argument('service')
@click.argument('command', nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
@_handle_errors
def exec_command(ctx, detached, user, no_tty, privileged, service, command):
    """Run a command inside an existing container"""
    options = _process_options(detached, user, no_tty, privileged=privileged)
    code = _project(ctx).exec(service, list(command), options)
    ctx.exit(code)


@cli.command()
@click.option('--detached', '-d', is_flag=True, help='Run command detached in background')
@click.option('--user', help='User as which to run a command')
@click.option('-T', 'no_tty', is_flag=True, help='Do not allocate a TTY when running a command')
@click.option('--privileged', is_flag=True, help='Run a command with elevated privileges')
@click.argument('service')
@click.pass_context
@_handle_errors
def shell(ctx, detached, user, no_tty, privileged, service):
    """Run an interactive shell inside a running container"""
    options = _process_options(detached, user, no_tty, privileged=privileged)
    code = _project(ctx).shell(service, options)
    ctx.exit(code)


@cli.command(context_settings=PROCESS_SETTINGS, epilog="""
\b
To enable tests for a service, add a label with the test command:
    myservice:
      labels:
        io.fdy.cage.test: "rspec"
""")
@click.option('--detached', '-d', is_flag=True, help='Run command detached in background')
@click.option('--user', help='User as which to run a command')
@click.option('-T', 'no_tty', is_flag=True, help='Do not allocate a TTY when running a command')
@click.option('--entrypoint', help='Override the entrypoint of the service')
@click.option('-e', 'environment', multiple=True, metavar='KEY=VAL',
              help='Set an environment variable in the container')
@click.argument('service')
@click.argument('command', nargs=-1, type=click.UNPROCESSED)
@click.pass_context
@_handle_errors
def test(ctx, detached, user, no_tty, entrypoint, environment, service, command):
    """Run the tests associated with a service, if any"""
    options = _process_options(detached, user, no_tty, entrypoint, environment)
    code = _project(ctx).test(service, list(command) or None, options)
    ctx.exit(code)


@cli.command()
@click.option('--follow', '-f', is_flag=True, help='Follow log output')
@click.option('--tail', type=click.IntRange(min=0), metavar='NUMBER',
              help='Number of lines from end of output to display')
@click.argument('pods_or_services', nargs=-1)
@click.pass_context
@_handle_errors
def logs(ctx, follow, tail, pods_or_services):
    """Display logs for a service"""
    stream = _project(ctx).logs(pods_or_services, LogsOptions(follow=follow, tail=tail))
    try:
        for svc, line in stream:
            click.echo(f"{svc.qualified_name:20} | {line}")
    except KeyboardInterrupt:
        click.echo("\nStopping log tailing...")
    finally:
        stream.close()


@cli.group()
def source():
    """Commands for working with git repositories and local source trees"""


@source.command(name='ls')
@click.pass_context
@_handle_errors
def source_ls(ctx):
    """List all known source tree aliases and URLs"""
    project = _project(ctx, output=False)
    click.echo(f"{'ALIAS':25} {'STATE':20} URL")
    for alias in project.source_list():
        click.echo(f"{alias.alias:25} {alias.state.value:20} {alias.url}")
        if alias.state.value != "unmounted":
            click.echo(f"{'':25} {'':20} {alias.path}")


@source.command(name='clone')
@click.argument('alias')
@click.pass_context
@_handle_errors
def source_clone(ctx, alias):
    """Clone a git repository using its short alias"""
    project = _project(ctx, output=False)
    source_alias = project.source_clone(alias)
    project.output()
    click.echo(f"{source_alias.alias} is {source_alias.state.value} at {source_alias.path}")


@source.command(name='mount')
@click.argument('alias')
@click.pass_context
@_handle_errors
def source_mount(ctx, alias):
    """Mount a source tree into the containers that use it"""
    project = _project(ctx, output=False)
    source_alias = project.source_mount(alias)
    project.output()
    click.echo(f"{source_alias.alias} is {source_alias.state.value}")


@source.command(name='unmount')
@click.argument('alias')
@click.pass_context
@_handle_errors
def source_unmount(ctx, alias):
    """Unmount a local source tree from all containers"""
    project = _project(ctx, output=False)
    source_alias = project.source_unmount(alias)
    project.output()
    click.echo(f"{source_alias.alias} is {source_alias.state.value}")


@cli.command()
@click.argument('directory', metavar='DIR')
@click.pass_context
@_handle_errors
def export(ctx, directory):
    """Export project as flattened *.yml files"""
    out = _project(ctx, output=False).export(directory)
    click.echo(f"Exported project to {out}")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
