import asyncio, json, typer
import grpc
from grpc import aio
from .stub import RegistryStub

app = typer.Typer(help="Cloudfest chat registry client")

async def _call(host: str, port: int, identity: str, method: str, request: dict = None):
    """Invoke one registry RPC and return the decoded response."""
    async with aio.insecure_channel(f"{host}:{port}") as chan:
        stub = RegistryStub(chan, identity)
        return await getattr(stub, method)(request)

def _run(method: str, request: dict = None, identity: str = "",
         host: str = "127.0.0.1", port: int = 50051):
    """Run one RPC, print its JSON response, exit non-zero on rejection."""
    try:
        resp = asyncio.run(_call(host, port, identity, method, request))
    except grpc.aio.AioRpcError as e:
        typer.echo(f"[error] {e.code().name}: {e.details()}", err=True)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(resp, indent=2, ensure_ascii=False))
    return resp

@app.command("register")
def register_cmd(username: str, image_hash: str, payment: int = 0,
                 identity: str = typer.Option(..., help="Caller identity"),
                 host: str = "127.0.0.1", port: int = 50051):
    """Register the caller under USERNAME, attaching PAYMENT."""
    _run("Register", {"username": username, "image_hash": image_hash, "payment": payment},
         identity, host, port)

@app.command("update-profile")
def update_profile_cmd(image_hash: str, identity: str = typer.Option(...),
                       host: str = "127.0.0.1", port: int = 50051):
    """Replace the caller's profile IMAGE_HASH."""
    _run("UpdateProfile", {"image_hash": image_hash}, identity, host, port)

@app.command("send")
def send_cmd(content: str, identity: str = typer.Option(...),
             host: str = "127.0.0.1", port: int = 50051):
    """Send a global message."""
    _run("SendGlobal", {"content": content}, identity, host, port)

@app.command("dm")
def dm_cmd(recipient: str, content: str, identity: str = typer.Option(...),
           host: str = "127.0.0.1", port: int = 50051):
    """Send a private message to RECIPIENT (an identity)."""
    _run("SendPrivate", {"recipient": recipient, "content": content}, identity, host, port)

@app.command("group-send")
def group_send_cmd(group_id: int, content: str, identity: str = typer.Option(...),
                   host: str = "127.0.0.1", port: int = 50051):
    """Send CONTENT to group GROUP_ID (caller must be a member)."""
    _run("SendGroup", {"group_id": group_id, "content": content}, identity, host, port)

@app.command("create-group")
def create_group_cmd(name: str, identity: str = typer.Option(...),
                     host: str = "127.0.0.1", port: int = 50051):
    """Create a group called NAME with the caller as first member."""
    _run("CreateGroup", {"name": name}, identity, host, port)

@app.command("join")
def join_cmd(group_id: int, identity: str = typer.Option(...),
             host: str = "127.0.0.1", port: int = 50051):
    """Join group GROUP_ID."""
    _run("JoinGroup", {"group_id": group_id}, identity, host, port)

@app.command("leave")
def leave_cmd(group_id: int, identity: str = typer.Option(...),
              host: str = "127.0.0.1", port: int = 50051):
    """Leave group GROUP_ID."""
    _run("LeaveGroup", {"group_id": group_id}, identity, host, port)

@app.command("set-fee")
def set_fee_cmd(fee: int, identity: str = typer.Option(...),
                host: str = "127.0.0.1", port: int = 50051):
    """Owner only: change the registration fee."""
    _run("SetRegistrationFee", {"fee": fee}, identity, host, port)

@app.command("pause")
def pause_cmd(paused: bool = typer.Option(True, "--on/--off"), identity: str = typer.Option(...),
              host: str = "127.0.0.1", port: int = 50051):
    """Owner only: toggle the pause flag."""
    _run("SetPaused", {"paused": paused}, identity, host, port)

@app.command("deactivate-user")
def deactivate_user_cmd(target: str, identity: str = typer.Option(...),
                        host: str = "127.0.0.1", port: int = 50051):
    """Owner only: deactivate the user registered by TARGET."""
    _run("DeactivateUser", {"identity": target}, identity, host, port)

@app.command("deactivate-group")
def deactivate_group_cmd(group_id: int, identity: str = typer.Option(...),
                         host: str = "127.0.0.1", port: int = 50051):
    """Owner only: deactivate group GROUP_ID."""
    _run("DeactivateGroup", {"group_id": group_id}, identity, host, port)

@app.command("withdraw")
def withdraw_cmd(identity: str = typer.Option(...), host: str = "127.0.0.1", port: int = 50051):
    """Owner only: withdraw the accumulated registration fees."""
    _run("WithdrawFees", {}, identity, host, port)

@app.command("usernames")
def usernames_cmd(host: str = "127.0.0.1", port: int = 50051):
    """List every username in registration order."""
    _run("GetAllUsernames", {}, "", host, port)

@app.command("user")
def user_cmd(username: str = typer.Option(None), address: str = typer.Option(None),
             host: str = "127.0.0.1", port: int = 50051):
    """Look a user up by --username or by --address (identity)."""
    if username:
        _run("GetUserByUsername", {"username": username}, "", host, port)
    elif address:
        _run("GetUserByAddress", {"identity": address}, "", host, port)
    else:
        typer.echo("[error] Pass --username or --address", err=True)
        raise typer.Exit(code=2)

@app.command("ens")
def ens_cmd(identity: str, host: str = "127.0.0.1", port: int = 50051):
    """Show the .cloudfest name of IDENTITY."""
    _run("GetENSName", {"identity": identity}, "", host, port)

@app.command("messages")
def messages_cmd(start: int = 0, count: int = 10, host: str = "127.0.0.1", port: int = 50051):
    """Show ledger messages from START, up to COUNT of them."""
    _run("GetMessages", {"start": start, "count": count}, "", host, port)

@app.command("group-messages")
def group_messages_cmd(group_id: int, start: int = 0, count: int = 10,
                       host: str = "127.0.0.1", port: int = 50051):
    """Show a page of group GROUP_ID's messages; unused slots come back empty."""
    _run("GetGroupMessages", {"group_id": group_id, "start": start, "count": count},
         "", host, port)

@app.command("private-messages")
def private_messages_cmd(other: str, start: int = 0, count: int = 10,
                         identity: str = typer.Option(...),
                         host: str = "127.0.0.1", port: int = 50051):
    """Show a page of private messages between the caller and OTHER."""
    _run("GetPrivateMessages", {"other": other, "start": start, "count": count},
         identity, host, port)

@app.command("is-member")
def is_member_cmd(group_id: int, member: str, host: str = "127.0.0.1", port: int = 50051):
    """Check whether MEMBER belongs to group GROUP_ID."""
    _run("IsGroupMember", {"group_id": group_id, "identity": member}, "", host, port)

@app.command("members")
def members_cmd(group_id: int, host: str = "127.0.0.1", port: int = 50051):
    """List the members of group GROUP_ID in list order."""
    _run("GetGroupMembers", {"group_id": group_id}, "", host, port)

@app.command("group-info")
def group_info_cmd(group_id: int, host: str = "127.0.0.1", port: int = 50051):
    """Show name, creator, member count and creation time of GROUP_ID."""
    _run("GetGroupInfo", {"group_id": group_id}, "", host, port)

@app.command("state")
def state_cmd(host: str = "127.0.0.1", port: int = 50051):
    """Show counters, fee, pause flag and balance."""
    _run("GetState", {}, "", host, port)

async def _watch(host: str, port: int):
    async with aio.insecure_channel(f"{host}:{port}") as chan:
        stub = RegistryStub(chan)
        async for note in stub.Subscribe():
            event = note.pop("event")
            typer.echo(f"[{event}] {json.dumps(note, ensure_ascii=False)}")

@app.command("watch")
def watch_cmd(host: str = "127.0.0.1", port: int = 50051):
    """Print notifications as the server commits them."""
    try:
        asyncio.run(_watch(host, port))
    except KeyboardInterrupt:
        pass

async def _demo(owner: str, host: str, port: int):
    """Walk through registration, messaging, groups and fee withdrawal."""
    async with aio.insecure_channel(f"{host}:{port}") as chan:
        admin = RegistryStub(chan, owner)
        alice = RegistryStub(chan, "alice-id")
        bob = RegistryStub(chan, "bob-id")

        fee = (await admin.GetState())["registration_fee"]
        await alice.Register({"username": "alice", "image_hash": "QmAlice", "payment": fee})
        await bob.Register({"username": "bob", "image_hash": "QmBob", "payment": fee})
        print(f"[demo] registered {(await admin.GetAllUsernames())['usernames']}")

        msg = await alice.SendGlobal({"content": "Hello everyone!"})
        print(f"[demo] global message {msg['id']}: {msg['content']}")

        group_id = (await alice.CreateGroup({"name": "Dev Team"}))["group_id"]
        await bob.JoinGroup({"group_id": group_id})
        info = await admin.GetGroupInfo({"group_id": group_id})
        print(f"[demo] {info['name']} has {info['member_count']} members")
        await bob.LeaveGroup({"group_id": group_id})
        await alice.SendGroup({"group_id": group_id, "content": "Welcome"})

        ens = await admin.GetENSName({"identity": "alice-id"})
        print(f"[demo] alice resolves to {ens['name']}")
        if fee:
            withdrawn = await admin.WithdrawFees()
            print(f"[demo] owner withdrew {withdrawn['amount']}")

@app.command("demo")
def demo_cmd(owner: str = typer.Option(..., help="Owner identity the server was started with"),
             host: str = "127.0.0.1", port: int = 50051):
    """Run the alice/bob walkthrough against a fresh server."""
    try:
        asyncio.run(_demo(owner, host, port))
    except grpc.aio.AioRpcError as e:
        typer.echo(f"[error] {e.code().name}: {e.details()}", err=True)
        raise typer.Exit(code=1)

if __name__ == "__main__":
    app()
